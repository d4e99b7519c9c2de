"""
REST API routes — inquiries, admin user management, client profiles.

Route prefix: /api/v1 (``health_router``: /api)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_portal
from api.errors import unwrap
from auth.dependencies import db_session, require
from auth.password import generate_temporary_password, hash_password
from config.settings import config
from core.access import ADMIN_ONLY, OPEN, SelfOrAdmin
from core.portal import PortalService
from core.session import PortalSession
from database.helpers import (
    check_database,
    create_inquiry,
    list_inquiries,
    list_users,
    list_users_for_client,
    update_user_password,
    update_user_role,
)
from utils.schemas import ApprovalReceipt, InquiryCreate, PendingInquiry, Role

logger = logging.getLogger(__name__)

router = APIRouter()
health_router = APIRouter(tags=["health"])


# ── Request / response schemas ─────────────────────────────────────────


class InquiryReceipt(BaseModel):
    inquiry_id: int
    status: str = "pending"
    message: str = "Inquiry received"
    temp_password: Optional[str] = None


class UserSummary(BaseModel):
    user_id: int
    username: str
    email: str
    role: Role
    external_client_id: Optional[str] = None
    company_name: Optional[str] = None
    phone_number: Optional[str] = None
    is_temporary_password: bool = False
    created_at: Optional[datetime] = None


class RoleUpdate(BaseModel):
    role: Role


def _summary(user) -> UserSummary:
    return UserSummary(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        external_client_id=user.external_client_id,
        company_name=user.company_name,
        phone_number=user.phone_number,
        is_temporary_password=bool(user.is_temporary_password),
        created_at=user.created_at,
    )


# ── Inquiries ──────────────────────────────────────────────────────────


@router.post("/inquiries", response_model=InquiryReceipt, status_code=status.HTTP_201_CREATED)
async def submit_inquiry(
    req: InquiryCreate,
    _session: PortalSession = Depends(require(OPEN)),
    db: AsyncSession = Depends(db_session),
) -> InquiryReceipt:
    """Public intake form; creates a pending inquiry and a pending account."""
    inquiry, temp_password = await create_inquiry(db, req)
    return InquiryReceipt(
        inquiry_id=inquiry.id,
        temp_password=temp_password if config.debug else None,
    )


@router.get("/admin/inquiries", response_model=List[PendingInquiry])
async def get_pending_inquiries(
    _session: PortalSession = Depends(require(ADMIN_ONLY)),
    db: AsyncSession = Depends(db_session),
) -> List[PendingInquiry]:
    return await list_inquiries(db)


@router.post("/admin/inquiries/{inquiry_id}/approve", response_model=ApprovalReceipt)
async def approve_inquiry(
    inquiry_id: int,
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> ApprovalReceipt:
    """Create the FreshBooks client for an inquiry and mark it imported."""
    result = await portal.approve_inquiry(session, inquiry_id)
    return unwrap(result)


# ── User management ────────────────────────────────────────────────────


@router.get("/admin/users", response_model=List[UserSummary])
async def get_users(
    _session: PortalSession = Depends(require(ADMIN_ONLY)),
    db: AsyncSession = Depends(db_session),
) -> List[UserSummary]:
    return [_summary(u) for u in await list_users(db)]


@router.patch("/admin/users/{user_id}/role", response_model=UserSummary)
async def set_user_role(
    user_id: int,
    req: RoleUpdate,
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    db: AsyncSession = Depends(db_session),
) -> UserSummary:
    user = await update_user_role(db, user_id, req.role)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s set role of user %s to %s", session.principal().id, user_id, req.role.value)
    return _summary(user)


@router.post("/admin/users/{user_id}/reset-password")
async def reset_user_password(
    user_id: int,
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    db: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Replace the user's password with a fresh temporary one."""
    temp_password = generate_temporary_password()
    user = await update_user_password(db, user_id, hash_password(temp_password), temporary=True)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s reset password of user %s", session.principal().id, user_id)
    body: Dict[str, Any] = {"message": "Password reset successful"}
    if config.debug:
        body["temp_password"] = temp_password
    return body


# ── Client profile ─────────────────────────────────────────────────────


@router.get("/clients/{external_client_id}")
async def get_client_profile(
    external_client_id: str,
    _session: PortalSession = Depends(require(SelfOrAdmin())),
    db: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Local accounts linked to a FreshBooks client (the customer, or any admin)."""
    users = await list_users_for_client(db, external_client_id)
    if not users:
        raise HTTPException(status_code=404, detail="No accounts linked to this client")
    return {
        "external_client_id": external_client_id,
        "users": [_summary(u).model_dump(mode="json") for u in users],
    }


# ── Health ─────────────────────────────────────────────────────────────


@health_router.get("/healthcheck")
async def health_check() -> JSONResponse:
    try:
        await check_database()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Healthcheck: database unreachable: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "database": "unreachable"},
        )
    return JSONResponse(content={"status": "ok", "database": "ok"})
