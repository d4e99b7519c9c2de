"""
FastAPI dependencies for authentication and authorization.

``get_portal_session`` turns the request's session token (Bearer header or
cookie) into a ``PortalSession``; a missing or bad token is simply an
anonymous session.  ``require(policy)`` is the gate every protected route
declares: it runs ``resolve_access`` and renders a denial as 401 or 403
before the handler body executes.
"""

from __future__ import annotations

from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.sessions import load_session
from auth.tokens import read_session_token
from config.settings import config
from core.access import AccessOutcome, AccessPolicy, resolve_access
from core.session import PortalSession
from database.session import get_db_session

_bearer_scheme = HTTPBearer(auto_error=False)

SUBJECT_PATH_PARAM = "external_client_id"


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


def session_token_from(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(config.session_cookie_name)


async def get_portal_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncSession = Depends(db_session),
) -> PortalSession:
    session_id = read_session_token(session_token_from(request, credentials))
    if session_id is None:
        return PortalSession.anonymous()
    return await load_session(db, session_id)


def require(policy: AccessPolicy) -> Callable:
    """
    Build a dependency that admits a request only if *policy* allows it.

    For ``SelfOrAdmin`` policies without a fixed subject, the subject is the
    ``external_client_id`` path parameter.
    """

    async def _gate(
        request: Request,
        session: PortalSession = Depends(get_portal_session),
    ) -> PortalSession:
        subject_id = request.path_params.get(SUBJECT_PATH_PARAM)
        decision = resolve_access(session, policy, subject_id)
        if decision.outcome is AccessOutcome.DENY_UNAUTHENTICATED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if decision.outcome is AccessOutcome.DENY_FORBIDDEN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return session

    return _gate
