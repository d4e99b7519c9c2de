"""
FastAPI dependencies (shared across routes).

One ``CredentialStore`` per process: its per-session locks only serialize
refreshes if every request goes through the same instance.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session
from auth.sessions import SessionTokenBackend
from connectors.freshbooks import FreshBooksConnector
from connectors.freshbooks_api import FreshBooksClient
from core.credentials import CredentialStore
from core.portal import PortalService
from database.helpers import SqlInquiryRepository

credential_store = CredentialStore(SessionTokenBackend())
freshbooks_connector = FreshBooksConnector()
freshbooks_client = FreshBooksClient()


async def get_portal(db: AsyncSession = Depends(db_session)) -> PortalService:
    """A ``PortalService`` wired to this request's DB session."""
    return PortalService(
        credential_store,
        freshbooks_connector,
        freshbooks_client,
        inquiries=SqlInquiryRepository(db),
    )
