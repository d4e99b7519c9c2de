"""
Pydantic schemas for the portal core.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════════════════════
# Identity
# ═══════════════════════════════════════════════════════════════════════════════


class Role(str, Enum):
    PENDING = "pending"
    CUSTOMER = "customer"
    ADMIN = "admin"


class Principal(BaseModel):
    """The authenticated identity attached to a session."""

    model_config = ConfigDict(frozen=True)

    id: int
    role: Role
    external_client_id: Optional[str] = None
    username: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Delegated credential
# ═══════════════════════════════════════════════════════════════════════════════


class TokenBundle(BaseModel):
    """
    OAuth credential set for the accounting API.

    Immutable: a refresh produces a new bundle, it never mutates this one.
    ``expires_at`` is fixed at acquisition time from the relative
    ``expires_in`` the token endpoint returned.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)

    # FreshBooks account coordinates, looked up once at exchange time
    account_id: Optional[str] = None
    business_id: Optional[int] = None

    @classmethod
    def acquired(
        cls,
        *,
        access_token: str,
        expires_in: int,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> "TokenBundle":
        acquired_at = now or datetime.now(timezone.utc)
        return cls(
            access_token=access_token,
            expires_at=acquired_at + timedelta(seconds=int(expires_in)),
            **fields,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Inquiries
# ═══════════════════════════════════════════════════════════════════════════════


class InquiryStatus(str, Enum):
    PENDING = "pending"
    IMPORTED = "imported"


class PendingInquiry(BaseModel):
    id: int
    username: str
    email: str
    phone_number: Optional[str] = None
    company_name: Optional[str] = None
    inquiry_details: Optional[str] = None
    created_at: Optional[datetime] = None
    status: InquiryStatus = InquiryStatus.PENDING
    external_client_id: Optional[str] = None
    imported_at: Optional[datetime] = None


class InquiryCreate(BaseModel):
    username: str = Field(..., min_length=2, max_length=128)
    email: str = Field(..., min_length=5, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=64)
    company_name: Optional[str] = Field(None, max_length=255)
    inquiry_details: Optional[str] = Field(None, max_length=5000)


class ApprovalReceipt(BaseModel):
    inquiry_id: int
    external_client_id: str
    status: InquiryStatus = InquiryStatus.IMPORTED


# ═══════════════════════════════════════════════════════════════════════════════
# External projections — FreshBooks owns these, we only read/write through
# ═══════════════════════════════════════════════════════════════════════════════


class ExternalClient(BaseModel):
    id: str
    email: str = ""
    organization: str = ""
    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    status: str = "active"


class ExternalProject(BaseModel):
    id: str
    title: str = ""
    description: Optional[str] = None
    client_id: Optional[str] = None
    active: bool = True
    complete: bool = False
    due_date: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class ExternalInvoice(BaseModel):
    id: str
    invoice_number: str = ""
    client_id: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    outstanding: Optional[str] = None
    status: str = ""
    due_date: Optional[str] = None
    created_at: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Tagged results
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_CONNECTED = "not_connected"
    EXCHANGE_FAILED = "exchange_failed"
    REFRESH_FAILED = "refresh_failed"
    NOT_FOUND = "not_found"
    ALREADY_IMPORTED = "already_imported"
    EXTERNAL_CREATE_FAILED = "external_create_failed"
    EXTERNAL_FETCH_FAILED = "external_fetch_failed"
    TIMEOUT = "timeout"


class Failure(BaseModel):
    kind: ErrorKind
    detail: str = ""
    retryable: bool = False
    reconnect_required: bool = False
    # For TIMEOUT: which *_failed kind the timed-out call would have reported
    variant_of: Optional[ErrorKind] = None
    # Set when FreshBooks already holds a client for the failed operation
    external_client_id: Optional[str] = None


class Result(BaseModel, Generic[T]):
    """Success-or-failure envelope returned by every portal operation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[Failure] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Failure) -> "Result":
        return cls(ok=False, error=error)


class SyncReport(BaseModel):
    # value is List[ExternalProject] / List[ExternalInvoice] on success
    projects: Result
    invoices: Result
    synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionStatus(BaseModel):
    connected: bool
    expires_at: Optional[datetime] = None
    expired: bool = False
    scopes: List[str] = Field(default_factory=list)
    account_id: Optional[str] = None
