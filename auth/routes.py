"""
Auth API routes — login, logout, me, change-password.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import credential_store
from auth.dependencies import db_session, require
from auth.password import hash_password, verify_password
from auth.sessions import close_session, open_session
from config.settings import config
from core.access import AUTHENTICATED
from core.session import PortalSession
from database.helpers import get_user, get_user_by_email, get_user_by_username, update_user_password
from utils.schemas import Role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


# ── Request / response schemas ─────────────────────────────────────────


class LoginRequest(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str


class ChangePasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=128)


class MeResponse(BaseModel):
    user_id: int
    username: str
    email: str
    role: Role
    external_client_id: Optional[str] = None
    company_name: Optional[str] = None
    must_change_password: bool = False


class AuthResponse(MeResponse):
    token: str


def _me(user) -> Dict[str, Any]:
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "external_client_id": user.external_client_id,
        "company_name": user.company_name,
        "must_change_password": bool(user.is_temporary_password),
    }


# ── Endpoints ──────────────────────────────────────────────────────────


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Login with username (or email) + password; opens a server-side session."""
    user = await get_user_by_username(db, req.username)
    if user is None:
        user = await get_user_by_email(db, req.username)

    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    _session, token = await open_session(db, user)
    response.set_cookie(
        config.session_cookie_name,
        token,
        max_age=config.session_ttl_seconds,
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="lax",
    )
    logger.info("Login: %s (%s, role=%s)", user.username, user.id, user.role)
    return {**_me(user), "token": token}


@router.post("/logout")
async def logout(
    response: Response,
    session: PortalSession = Depends(require(AUTHENTICATED)),
    db: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    """Destroy the session, including any FreshBooks connection it owns."""
    await close_session(db, session.session_id)
    credential_store.forget(session.session_id)
    response.delete_cookie(config.session_cookie_name)
    return {"status": "logged_out"}


@router.get("/me", response_model=MeResponse)
async def me(
    session: PortalSession = Depends(require(AUTHENTICATED)),
    db: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    user = await get_user(db, session.principal().id)
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Account no longer exists")
    return _me(user)


@router.post("/change-password")
async def change_password(
    req: ChangePasswordRequest,
    session: PortalSession = Depends(require(AUTHENTICATED)),
    db: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    """Set a new password and clear the temporary-password flag."""
    user = await update_user_password(
        db, session.principal().id, hash_password(req.new_password), temporary=False,
    )
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Account no longer exists")
    logger.info("Password changed for user %s", user.id)
    return {"message": "Password updated successfully"}
