"""
Credential store — the session-owned FreshBooks token bundle.

The store itself never talks to FreshBooks.  ``resolve_valid_token`` is the
one place that decides a refresh is needed, and it does so while holding the
session's lock so two concurrent requests never refresh the same bundle twice.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Optional, Protocol

from core.errors import NotConnected, RefreshFailed
from core.session import PortalSession
from utils.schemas import TokenBundle

logger = logging.getLogger(__name__)


def is_expired(bundle: TokenBundle, now: Optional[datetime] = None) -> bool:
    """True iff ``now >= bundle.expires_at``."""
    return (now or datetime.now(timezone.utc)) >= bundle.expires_at


class CredentialBackend(Protocol):
    """Where bundles live between requests (see ``auth.sessions``)."""

    async def load(self, session_id: str) -> Optional[TokenBundle]: ...

    async def save(self, session_id: str, bundle: Optional[TokenBundle]) -> None: ...


class TokenRefresher(Protocol):
    async def refresh(self, bundle: TokenBundle) -> TokenBundle: ...


class CredentialStore:
    """
    get / put / clear the bundle owned by a session.

    Writes are serialized per ``session_id``.  The bundle is held on the
    session object itself, so one session can never observe another's.
    """

    def __init__(self, backend: Optional[CredentialBackend] = None):
        self._backend = backend
        # An entry lives only while a request holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, session: PortalSession) -> Optional[TokenBundle]:
        if session.session_id is None:
            return None
        return session.token_bundle

    async def put(self, session: PortalSession, bundle: TokenBundle) -> None:
        async with self.lock(session):
            await self._write(session, bundle)

    async def clear(self, session: PortalSession) -> None:
        async with self.lock(session):
            await self._write(session, None)

    def lock(self, session: PortalSession) -> asyncio.Lock:
        if session.session_id is None:
            raise ValueError("Anonymous sessions cannot hold credentials")
        lock = self._locks.get(session.session_id)
        if lock is None:
            lock = self._locks[session.session_id] = asyncio.Lock()
        return lock

    def forget(self, session_id: str) -> None:
        """Drop bookkeeping for a destroyed session."""
        self._locks.pop(session_id, None)

    async def _reload(self, session: PortalSession) -> Optional[TokenBundle]:
        # Caller holds the lock.  Another request (or worker) may have
        # refreshed the bundle since this session object was loaded.
        if self._backend is not None:
            session.token_bundle = await self._backend.load(session.session_id)
        return session.token_bundle

    async def _write(self, session: PortalSession, bundle: Optional[TokenBundle]) -> None:
        # Caller holds the lock.
        if self._backend is not None:
            await self._backend.save(session.session_id, bundle)
        session.token_bundle = bundle


async def resolve_valid_token(
    store: CredentialStore,
    refresher: TokenRefresher,
    session: PortalSession,
    *,
    now: Optional[datetime] = None,
) -> TokenBundle:
    """
    Return a non-expired bundle for *session*, refreshing if needed.

    Raises
    ------
    NotConnected
        No bundle, or the refresh token was revoked/expired (the bundle is
        cleared so the UI shows a reconnect prompt).
    RefreshFailed
        The token endpoint was unreachable twice in a row.  The bundle is
        kept; the caller may retry later.
    """
    bundle = store.get(session)
    if bundle is None:
        raise NotConnected()
    if not is_expired(bundle, now):
        return bundle

    async with store.lock(session):
        current = await store._reload(session)
        if current is None:
            raise NotConnected()
        if not is_expired(current, now):
            # refreshed by a concurrent request while we waited
            return current
        if not current.refresh_token:
            await store._write(session, None)
            raise NotConnected("FreshBooks token expired and cannot be refreshed")

        for attempt in (1, 2):
            try:
                refreshed = await refresher.refresh(current)
                break
            except RefreshFailed as exc:
                if exc.revoked:
                    logger.warning(
                        "Refresh token rejected for session %s: %s", session.session_id, exc.detail,
                    )
                    await store._write(session, None)
                    raise NotConnected(
                        "FreshBooks authorization expired, please reconnect",
                    ) from exc
                if attempt == 2:
                    raise
                logger.warning(
                    "Token refresh attempt %d failed for session %s (%s), retrying once",
                    attempt, session.session_id, exc.detail,
                )

        await store._write(session, refreshed)
        logger.info("Refreshed FreshBooks token for session %s", session.session_id)
        return refreshed
