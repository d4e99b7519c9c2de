"""
SQLAlchemy ORM models: principals, inquiries, server-side sessions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(String(16), nullable=False, default="pending")
    external_client_id = Column(String(64), nullable=True)
    phone_number = Column(String(64))
    company_name = Column(String(255))
    is_temporary_password = Column(Boolean, nullable=False, default=False)
    last_password_change = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    sessions = relationship("WebSession", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_users_external_client_id", "external_client_id"),)


class Inquiry(Base):
    __tablename__ = "inquiries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(128), nullable=False)
    email = Column(String(255), nullable=False)
    phone_number = Column(String(64))
    company_name = Column(String(255))
    inquiry_details = Column(Text)
    status = Column(String(16), nullable=False, default="pending")
    external_client_id = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    imported_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_inquiries_status", "status"),)


class WebSession(Base):
    """
    Server-side login session.

    ``token_bundle`` is the Fernet-encrypted FreshBooks credential owned by
    this session; deleting the row destroys it.
    """

    __tablename__ = "web_sessions"

    session_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    token_bundle = Column(Text, nullable=True)
    token_updated_at = Column(DateTime(timezone=True))

    user = relationship("User", back_populates="sessions")
