"""
Database helper functions — principals, inquiries, bootstrap.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth.password import generate_temporary_password, hash_password
from config.settings import config
from core.errors import AlreadyImported
from database.models import Inquiry, User
from database.session import async_session_factory
from utils.schemas import InquiryCreate, InquiryStatus, PendingInquiry, Principal, Role

logger = logging.getLogger(__name__)


def to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        role=Role(user.role),
        external_client_id=user.external_client_id,
        username=user.username,
    )


def to_pending_inquiry(row: Inquiry) -> PendingInquiry:
    return PendingInquiry(
        id=row.id,
        username=row.username,
        email=row.email,
        phone_number=row.phone_number,
        company_name=row.company_name,
        inquiry_details=row.inquiry_details,
        created_at=row.created_at,
        status=InquiryStatus(row.status),
        external_client_id=row.external_client_id,
        imported_at=row.imported_at,
    )


# ── Users ─────────────────────────────────────────────────────────────


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession) -> List[User]:
    result = await session.execute(select(User).order_by(User.id))
    return list(result.scalars().all())


async def list_users_for_client(session: AsyncSession, external_client_id: str) -> List[User]:
    result = await session.execute(
        select(User).where(User.external_client_id == external_client_id).order_by(User.id)
    )
    return list(result.scalars().all())


async def update_user_role(session: AsyncSession, user_id: int, role: Role) -> Optional[User]:
    user = await session.get(User, user_id)
    if user is None:
        return None
    user.role = role.value
    await session.flush()
    logger.info("User %s role set to %s", user_id, role.value)
    return user


async def update_user_password(
    session: AsyncSession,
    user_id: int,
    password_hash: str,
    *,
    temporary: bool = False,
) -> Optional[User]:
    user = await session.get(User, user_id)
    if user is None:
        return None
    user.password_hash = password_hash
    user.is_temporary_password = temporary
    user.last_password_change = datetime.now(timezone.utc)
    await session.flush()
    return user


async def _principal_exists(session: AsyncSession, email: str) -> bool:
    # New principals use their email as username, so both columns must be free.
    if await get_user_by_email(session, email) is not None:
        return True
    return await get_user_by_username(session, email) is not None


# ── Inquiries ─────────────────────────────────────────────────────────


async def create_inquiry(session: AsyncSession, data: InquiryCreate) -> tuple[Inquiry, Optional[str]]:
    """
    Record an anonymous inquiry and a matching ``pending`` principal.

    Returns the inquiry and the principal's temporary password (None when
    a principal with that email already existed).
    """
    inquiry = Inquiry(
        username=data.username,
        email=data.email,
        phone_number=data.phone_number,
        company_name=data.company_name,
        inquiry_details=data.inquiry_details,
        status=InquiryStatus.PENDING.value,
    )
    session.add(inquiry)

    temp_password = None
    if not await _principal_exists(session, data.email):
        temp_password = generate_temporary_password()
        session.add(
            User(
                username=data.email,
                email=data.email,
                password_hash=hash_password(temp_password),
                role=Role.PENDING.value,
                phone_number=data.phone_number,
                company_name=data.company_name,
                is_temporary_password=True,
            )
        )
    await session.flush()
    logger.info("Inquiry %s received from %s", inquiry.id, data.email)
    return inquiry, temp_password


async def list_inquiries(
    session: AsyncSession, status: Optional[InquiryStatus] = InquiryStatus.PENDING,
) -> List[PendingInquiry]:
    stmt = select(Inquiry).order_by(Inquiry.created_at.desc())
    if status is not None:
        stmt = stmt.where(Inquiry.status == status.value)
    result = await session.execute(stmt)
    return [to_pending_inquiry(row) for row in result.scalars().all()]


class SqlInquiryRepository:
    """``InquiryRepository`` backed by the request's DB session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, inquiry_id: int) -> Optional[PendingInquiry]:
        row = await self.session.get(Inquiry, inquiry_id, populate_existing=True)
        return to_pending_inquiry(row) if row is not None else None

    async def mark_imported(self, inquiry_id: int, external_client_id: str) -> PendingInquiry:
        """
        pending → imported, and link the inquiry's principal as a customer.

        Committed immediately: FreshBooks already holds the new client.
        """
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(Inquiry)
            .where(Inquiry.id == inquiry_id, Inquiry.status == InquiryStatus.PENDING.value)
            .values(
                status=InquiryStatus.IMPORTED.value,
                external_client_id=external_client_id,
                imported_at=now,
            )
            .returning(Inquiry)
            .execution_options(synchronize_session=False)
        )
        row = result.scalar_one_or_none()
        if row is None:
            await self.session.rollback()
            raise AlreadyImported(f"Inquiry {inquiry_id} is no longer pending")
        await self.session.refresh(row)

        await self._link_customer(row, external_client_id)
        await self.session.commit()
        return to_pending_inquiry(row)

    async def _link_customer(self, row: Inquiry, external_client_id: str) -> Optional[User]:
        """
        Make the inquiry's principal the customer of *external_client_id*.

        Only a ``pending`` principal, or a customer not yet linked to any
        client, is touched.  Admins and linked customers keep their role and
        link; the case is logged for an admin to resolve.
        """
        user = await get_user_by_email(self.session, row.email)
        if user is not None and not _linkable(user):
            logger.warning(
                "Inquiry %s: principal %s (role=%s, client=%s) left unchanged; "
                "FreshBooks client %s needs a manual link",
                row.id, user.id, user.role, user.external_client_id, external_client_id,
            )
            return None
        if user is None:
            if await get_user_by_username(self.session, row.email) is not None:
                logger.warning(
                    "Inquiry %s: username %s is taken by another principal; "
                    "FreshBooks client %s needs a manual link",
                    row.id, row.email, external_client_id,
                )
                return None
            user = User(
                username=row.email,
                email=row.email,
                password_hash=hash_password(generate_temporary_password()),
                phone_number=row.phone_number,
                company_name=row.company_name,
                is_temporary_password=True,
            )
            self.session.add(user)
        user.role = Role.CUSTOMER.value
        user.external_client_id = external_client_id
        await self.session.flush()
        logger.info("Principal %s linked to FreshBooks client %s", row.email, external_client_id)
        return user


def _linkable(user: User) -> bool:
    if user.role == Role.PENDING.value:
        return True
    return user.role == Role.CUSTOMER.value and not user.external_client_id


# ── Startup / health ──────────────────────────────────────────────────


async def ensure_bootstrap_admin() -> bool:
    """Create the configured admin principal if it does not exist yet."""
    email = config.bootstrap_admin_email
    if not (email and config.bootstrap_admin_password):
        return False
    async with async_session_factory() as session:
        if await get_user_by_username(session, email) is not None:
            return False
        session.add(
            User(
                username=email,
                email=email,
                password_hash=hash_password(config.bootstrap_admin_password),
                role=Role.ADMIN.value,
            )
        )
        await session.commit()
    logger.info("Bootstrap admin %s created", email)
    return True


async def check_database() -> None:
    """Raise if the database cannot answer a trivial query."""
    async with async_session_factory() as session:
        await session.execute(text("SELECT 1"))
