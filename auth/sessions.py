"""
Server-side login sessions.

A ``web_sessions`` row is the durable half of a ``PortalSession``: it binds
a principal to an expiry and carries the session's encrypted FreshBooks
bundle.  ``SessionTokenBackend`` is the ``CredentialBackend`` the credential
store writes through.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import create_session_token
from config.settings import config
from connectors.encryption import decrypt_bundle, encrypt_bundle
from core.session import PortalSession
from database.helpers import to_principal
from database.models import User, WebSession
from database.session import async_session_factory
from utils.schemas import TokenBundle

logger = logging.getLogger(__name__)


def _as_uuid(session_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(session_id)
    except (TypeError, ValueError):
        return None


async def open_session(db: AsyncSession, user: User) -> Tuple[PortalSession, str]:
    """Create a session row for *user*; return it with its signed token."""
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=config.session_ttl_seconds)
    row = WebSession(session_id=uuid.uuid4(), user_id=user.id, expires_at=expires_at)
    db.add(row)
    await db.flush()

    session_id = str(row.session_id)
    logger.info("Session %s opened for user %s", session_id, user.id)
    session = PortalSession(
        session_id=session_id,
        principal=to_principal(user),
        expires_at=expires_at,
    )
    return session, create_session_token(session_id)


async def load_session(db: AsyncSession, session_id: Optional[str]) -> PortalSession:
    """
    Rebuild the ``PortalSession`` for *session_id*.

    Unknown or expired ids yield an anonymous session.  The principal is
    read fresh from ``users`` so role changes apply on the next request.
    """
    sid = _as_uuid(session_id) if session_id else None
    if sid is None:
        return PortalSession.anonymous()

    result = await db.execute(
        select(WebSession, User)
        .join(User, User.id == WebSession.user_id)
        .where(WebSession.session_id == sid)
    )
    found = result.first()
    if found is None:
        return PortalSession.anonymous()
    row, user = found

    if row.expires_at <= datetime.now(timezone.utc):
        return PortalSession.anonymous()

    return PortalSession(
        session_id=str(row.session_id),
        principal=to_principal(user),
        expires_at=row.expires_at,
        token_bundle=decrypt_bundle(row.token_bundle),
    )


async def close_session(db: AsyncSession, session_id: str) -> bool:
    """Delete the session row, and with it the session's FreshBooks bundle."""
    sid = _as_uuid(session_id)
    if sid is None:
        return False
    result = await db.execute(delete(WebSession).where(WebSession.session_id == sid))
    await db.flush()
    if result.rowcount:
        logger.info("Session %s closed", session_id)
    return bool(result.rowcount)


async def purge_expired_sessions() -> int:
    """Remove expired rows.  Called at startup."""
    async with async_session_factory() as db:
        result = await db.execute(
            delete(WebSession).where(WebSession.expires_at <= datetime.now(timezone.utc))
        )
        await db.commit()
    return result.rowcount or 0


class SessionTokenBackend:
    """
    Persists token bundles in ``web_sessions.token_bundle``.

    Uses its own DB sessions and commits immediately, so a refreshed bundle
    is durable even when the request that refreshed it later fails.
    """

    async def load(self, session_id: str) -> Optional[TokenBundle]:
        sid = _as_uuid(session_id)
        if sid is None:
            return None
        async with async_session_factory() as db:
            result = await db.execute(
                select(WebSession.token_bundle).where(WebSession.session_id == sid)
            )
            return decrypt_bundle(result.scalar_one_or_none())

    async def save(self, session_id: str, bundle: Optional[TokenBundle]) -> None:
        sid = _as_uuid(session_id)
        if sid is None:
            raise ValueError(f"Not a session id: {session_id!r}")
        stored = encrypt_bundle(bundle) if bundle is not None else None
        async with async_session_factory() as db:
            await db.execute(
                update(WebSession)
                .where(WebSession.session_id == sid)
                .values(token_bundle=stored, token_updated_at=datetime.now(timezone.utc))
            )
            await db.commit()
