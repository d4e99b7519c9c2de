"""
FreshBooks resource calls — projects, invoices, clients.

Token pass-through: every call takes the already-resolved ``TokenBundle``.
Deciding whether the bundle is still valid is ``core.credentials``' job.

Failures are raised as ``ExternalFetchFailed`` / ``ExternalCreateFailed``;
a timeout sets ``timed_out`` on the same exception.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from config.settings import config
from core.errors import ExternalCreateFailed, ExternalFetchFailed, NotConnected
from utils.schemas import (
    ExternalClient,
    ExternalInvoice,
    ExternalProject,
    PendingInquiry,
    TokenBundle,
)

logger = logging.getLogger(__name__)

_PER_PAGE = 100
_MAX_PAGES = 50


def _log_fb_error(resp: httpx.Response, what: str) -> str:
    """Log FreshBooks API error details and return a one-line summary."""
    try:
        body = resp.json()
    except ValueError:
        body = resp.text[:500]
    logger.error("[%s] FreshBooks %d — body=%s", what, resp.status_code, body)
    return f"FreshBooks {what} failed ({resp.status_code})"


def _fb_headers(bundle: TokenBundle) -> Dict[str, str]:
    return {
        "Authorization": f"{bundle.token_type or 'Bearer'} {bundle.access_token}",
        "Api-Version": "alpha",
        "Content-Type": "application/json",
    }


def _amount(value: Any) -> Tuple[Optional[str], Optional[str]]:
    if isinstance(value, dict):
        return value.get("amount"), value.get("code")
    return (str(value) if value is not None else None), None


class FreshBooksClient:
    """Thin async client over the FreshBooks REST resources the portal uses."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=config.freshbooks_api_base,
            timeout=config.external_timeout_seconds,
            transport=self._transport,
        )

    # ── Read ──────────────────────────────────────────────────────────

    async def list_projects(self, bundle: TokenBundle) -> List[ExternalProject]:
        if bundle.business_id is None:
            raise NotConnected("FreshBooks connection has no business; reconnect to pick one")

        rows = await self._fetch_all(
            bundle,
            f"/projects/business/{bundle.business_id}/projects",
            what="projects",
            extract=lambda body: (body.get("projects") or [], body.get("meta") or {}),
        )
        return [
            ExternalProject(
                id=str(p.get("id")),
                title=p.get("title") or "",
                description=p.get("description"),
                client_id=str(p["client_id"]) if p.get("client_id") is not None else None,
                active=bool(p.get("active", True)),
                complete=bool(p.get("complete", False)),
                due_date=p.get("due_date"),
                raw=p,
            )
            for p in rows
        ]

    async def list_invoices(self, bundle: TokenBundle) -> List[ExternalInvoice]:
        account_id = self._account(bundle)

        def extract(body: Dict[str, Any]):
            result = (body.get("response") or {}).get("result") or {}
            return result.get("invoices") or [], result

        rows = await self._fetch_all(
            bundle,
            f"/accounting/account/{account_id}/invoices/invoices",
            what="invoices",
            extract=extract,
        )
        invoices = []
        for inv in rows:
            amount, currency = _amount(inv.get("amount"))
            outstanding, _ = _amount(inv.get("outstanding"))
            invoices.append(
                ExternalInvoice(
                    id=str(inv.get("invoiceid") or inv.get("id")),
                    invoice_number=str(inv.get("invoice_number") or ""),
                    client_id=str(inv["customerid"]) if inv.get("customerid") is not None else None,
                    amount=amount,
                    currency=currency or inv.get("currency_code"),
                    outstanding=outstanding,
                    status=str(inv.get("v3_status") or inv.get("status") or ""),
                    due_date=inv.get("due_date"),
                    created_at=inv.get("create_date"),
                    raw=inv,
                )
            )
        return invoices

    async def list_clients(self, bundle: TokenBundle) -> List[ExternalClient]:
        account_id = self._account(bundle)

        def extract(body: Dict[str, Any]):
            result = (body.get("response") or {}).get("result") or {}
            return result.get("clients") or [], result

        rows = await self._fetch_all(
            bundle,
            f"/accounting/account/{account_id}/users/clients",
            what="clients",
            extract=extract,
        )
        return [_to_client(c) for c in rows]

    # ── Write ─────────────────────────────────────────────────────────

    async def create_client(self, bundle: TokenBundle, inquiry: PendingInquiry) -> str:
        """Create a FreshBooks client from an inquiry and return its id."""
        account_id = self._account(bundle)
        payload = {
            "client": {
                "email": inquiry.email,
                "fname": inquiry.username,
                "organization": inquiry.company_name or "",
                "mob_phone": inquiry.phone_number or "",
                "note": inquiry.inquiry_details or "",
            }
        }
        try:
            async with self._http() as client:
                resp = await client.post(
                    f"/accounting/account/{account_id}/users/clients",
                    headers=_fb_headers(bundle),
                    json=payload,
                )
                if resp.status_code >= 400:
                    raise ExternalCreateFailed(
                        _log_fb_error(resp, "create client"),
                        transient=resp.status_code >= 500,
                    )
                created = ((resp.json().get("response") or {}).get("result") or {}).get("client") or {}
        except httpx.TimeoutException as exc:
            raise ExternalCreateFailed(f"FreshBooks create client timed out: {exc}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            raise ExternalCreateFailed(f"FreshBooks create client failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise ExternalCreateFailed(f"Unreadable FreshBooks response: {exc}") from exc

        client_id = created.get("id") or created.get("userid")
        if client_id is None:
            raise ExternalCreateFailed("FreshBooks did not return a client id")
        logger.info("Created FreshBooks client %s for %s", client_id, inquiry.email)
        return str(client_id)

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _account(bundle: TokenBundle) -> str:
        if not bundle.account_id:
            raise NotConnected("FreshBooks connection has no account; reconnect to pick one")
        return bundle.account_id

    async def _fetch_all(
        self,
        bundle: TokenBundle,
        path: str,
        *,
        what: str,
        extract: Callable[[Dict[str, Any]], Tuple[List[Dict[str, Any]], Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """Walk every page of a list endpoint."""
        rows: List[Dict[str, Any]] = []
        try:
            async with self._http() as client:
                page = 1
                while page <= _MAX_PAGES:
                    resp = await client.get(
                        path,
                        headers=_fb_headers(bundle),
                        params={"page": page, "per_page": _PER_PAGE},
                    )
                    if resp.status_code >= 400:
                        raise ExternalFetchFailed(
                            _log_fb_error(resp, what),
                            transient=resp.status_code >= 500,
                        )
                    items, meta = extract(resp.json())
                    rows.extend(items)
                    pages = int(meta.get("pages") or 1)
                    if page >= pages or not items:
                        break
                    page += 1
        except httpx.TimeoutException as exc:
            raise ExternalFetchFailed(f"FreshBooks {what} timed out: {exc}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            raise ExternalFetchFailed(f"FreshBooks {what} request failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise ExternalFetchFailed(f"Unreadable FreshBooks {what} response: {exc}") from exc

        logger.debug("Fetched %d FreshBooks %s", len(rows), what)
        return rows


def _to_client(c: Dict[str, Any]) -> ExternalClient:
    vis_state = c.get("vis_state")
    status = {0: "active", 1: "deleted", 2: "archived"}.get(vis_state, "active")
    return ExternalClient(
        id=str(c.get("id") or c.get("userid")),
        email=c.get("email") or "",
        organization=c.get("organization") or "",
        first_name=c.get("fname") or "",
        last_name=c.get("lname") or "",
        phone_number=c.get("mob_phone") or c.get("bus_phone") or "",
        status=status,
    )
