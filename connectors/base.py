"""
BaseConnector — abstract interface for the accounting system's OAuth2 flow.

A connector knows the provider's endpoint shapes.  It never decides *when*
to exchange or refresh, and never persists what it gets back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from config.settings import config
from utils.schemas import Principal, TokenBundle


class BaseConnector(ABC):
    """Abstract base for OAuth2 connectors."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # ``transport`` lets tests plug in ``httpx.MockTransport``
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug, e.g. 'freshbooks'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested by this connector."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def build_authorization_url(self) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Deterministic: depends only on static configuration, so it is safe
        to render as a "connect" link before anyone has signed in.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str, principal: Principal) -> TokenBundle:
        """
        Exchange a single-use authorization code for a token bundle.

        Raises ``ExchangeFailed``.  Retrying with the same code is pointless;
        the user has to restart the authorization flow.
        """
        ...

    @abstractmethod
    async def refresh(self, bundle: TokenBundle) -> TokenBundle:
        """
        Exchange ``bundle.refresh_token`` for a new bundle.

        Raises ``RefreshFailed`` (``revoked=True`` when the provider rejected
        the refresh token itself).
        """
        ...

    async def revoke(self, bundle: TokenBundle) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        return True

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=config.external_timeout_seconds,
            transport=self._transport,
        )
