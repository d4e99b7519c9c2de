"""
FreshBooksConnector — OAuth2 web flow for the FreshBooks accounting API.

Only the credential side lives here (authorize URL, code exchange, refresh,
revoke).  Resource calls live in ``connectors.freshbooks_api``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import BaseConnector
from core.errors import ExchangeFailed, RefreshFailed
from utils.schemas import Principal, TokenBundle

logger = logging.getLogger(__name__)

_DEFAULT_EXPIRES_IN = 3600


class FreshBooksConnector(BaseConnector):
    """OAuth2 connector for FreshBooks."""

    @property
    def provider_name(self) -> str:
        return "freshbooks"

    @property
    def display_name(self) -> str:
        return "FreshBooks"

    @property
    def scopes(self) -> List[str]:
        return list(config.freshbooks_scopes)

    def is_configured(self) -> bool:
        return config.freshbooks_configured()

    @property
    def _token_url(self) -> str:
        return f"{config.freshbooks_api_base}/auth/oauth/token"

    @property
    def _revoke_url(self) -> str:
        return f"{config.freshbooks_api_base}/auth/oauth/revoke"

    @property
    def _identity_url(self) -> str:
        return f"{config.freshbooks_api_base}/auth/api/v1/users/me"

    def build_authorization_url(self) -> str:
        params = {
            "client_id": config.freshbooks_client_id,
            "response_type": "code",
            "redirect_uri": config.freshbooks_redirect_uri,
            "scope": " ".join(self.scopes),
        }
        return f"{config.freshbooks_auth_base}/oauth/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, principal: Principal) -> TokenBundle:
        """Exchange auth code for tokens, then look up the account it grants."""
        logger.info(
            "Exchanging FreshBooks authorization code %s… for principal %s",
            code[:6], principal.id,
        )
        try:
            async with self._http() as client:
                # 1. Exchange code for tokens
                token_resp = await client.post(
                    self._token_url,
                    json={
                        "grant_type": "authorization_code",
                        "client_id": config.freshbooks_client_id,
                        "client_secret": config.freshbooks_client_secret,
                        "code": code,
                        "redirect_uri": config.freshbooks_redirect_uri,
                    },
                )
                if token_resp.status_code >= 400:
                    raise ExchangeFailed(
                        _describe_error(token_resp, "token exchange"),
                        transient=token_resp.status_code >= 500,
                    )
                token_data = token_resp.json()
                if not token_data.get("access_token"):
                    raise ExchangeFailed("FreshBooks returned no access token")

                # 2. Resolve account coordinates for later resource calls
                account_id, business_id = await self._fetch_identity(
                    client, token_data["access_token"],
                )
        except httpx.TimeoutException as exc:
            raise ExchangeFailed(f"FreshBooks token exchange timed out: {exc}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            raise ExchangeFailed(f"FreshBooks token exchange failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise ExchangeFailed(f"Unreadable FreshBooks token response: {exc}") from exc

        return TokenBundle.acquired(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=token_data.get("expires_in") or _DEFAULT_EXPIRES_IN,
            scopes=_split_scopes(token_data.get("scope")),
            account_id=account_id,
            business_id=business_id,
        )

    async def refresh(self, bundle: TokenBundle) -> TokenBundle:
        """Use the refresh token to get a new bundle (FreshBooks rotates both)."""
        if not bundle.refresh_token:
            raise RefreshFailed("No refresh token available", revoked=True)
        try:
            async with self._http() as client:
                resp = await client.post(
                    self._token_url,
                    json={
                        "grant_type": "refresh_token",
                        "client_id": config.freshbooks_client_id,
                        "client_secret": config.freshbooks_client_secret,
                        "refresh_token": bundle.refresh_token,
                        "redirect_uri": config.freshbooks_redirect_uri,
                    },
                )
                if resp.status_code in (400, 401, 403):
                    raise RefreshFailed(_describe_error(resp, "token refresh"), revoked=True)
                if resp.status_code >= 400:
                    raise RefreshFailed(_describe_error(resp, "token refresh"), transient=True)
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise RefreshFailed(f"FreshBooks token refresh timed out: {exc}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            raise RefreshFailed(f"FreshBooks token refresh failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise RefreshFailed(f"Unreadable FreshBooks refresh response: {exc}", transient=True) from exc

        if not data.get("access_token"):
            raise RefreshFailed("FreshBooks returned no access token", transient=True)

        return TokenBundle.acquired(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or bundle.refresh_token,
            token_type=data.get("token_type", bundle.token_type),
            expires_in=data.get("expires_in") or _DEFAULT_EXPIRES_IN,
            scopes=_split_scopes(data.get("scope")) or list(bundle.scopes),
            account_id=bundle.account_id,
            business_id=bundle.business_id,
        )

    async def revoke(self, bundle: TokenBundle) -> bool:
        """Revoke the token at FreshBooks."""
        try:
            async with self._http() as client:
                resp = await client.post(
                    self._revoke_url,
                    json={
                        "client_id": config.freshbooks_client_id,
                        "client_secret": config.freshbooks_client_secret,
                        "token": bundle.access_token,
                    },
                )
                return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("FreshBooks token revocation failed: %s", exc)
            return False

    async def _fetch_identity(
        self, client: httpx.AsyncClient, access_token: str,
    ) -> Tuple[Optional[str], Optional[int]]:
        resp = await client.get(
            self._identity_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if resp.status_code >= 400:
            raise ExchangeFailed(
                _describe_error(resp, "identity lookup"),
                transient=resp.status_code >= 500,
            )
        identity = resp.json().get("response", {})
        for membership in identity.get("business_memberships") or []:
            business = membership.get("business") or {}
            if business.get("account_id"):
                return str(business["account_id"]), business.get("id")
        logger.warning("FreshBooks identity %s has no business membership", identity.get("id"))
        return None, None


def _split_scopes(scope: Any) -> List[str]:
    if not scope:
        return []
    if isinstance(scope, list):
        return [str(s) for s in scope]
    return str(scope).split()


def _describe_error(resp: httpx.Response, action: str) -> str:
    try:
        body: Dict[str, Any] = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    reason = body.get("error_description") or body.get("error") or resp.reason_phrase
    return f"FreshBooks {action} failed ({resp.status_code}): {reason}"
