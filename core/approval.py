"""
Approval workflow — turn a pending inquiry into a FreshBooks client.

    pending --approve--> imported      (terminal)

The local transition only happens after FreshBooks has confirmed the new
client, so an ``imported`` inquiry always has an external record behind it.
Declined inquiries simply stay ``pending``.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Optional, Protocol

from core.credentials import CredentialStore, TokenRefresher, resolve_valid_token
from core.errors import AlreadyImported, ImportNotRecorded, NotFound
from core.session import PortalSession
from utils.schemas import ApprovalReceipt, InquiryStatus, PendingInquiry

logger = logging.getLogger(__name__)

# Shared across workflow instances, which are built per request.  An entry
# lives only while some approval holds or waits on it.
_INQUIRY_LOCKS: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


class InquiryRepository(Protocol):
    async def get(self, inquiry_id: int) -> Optional[PendingInquiry]: ...

    async def mark_imported(self, inquiry_id: int, external_client_id: str) -> PendingInquiry: ...


class ApprovalWorkflow:
    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        api,
        inquiries: InquiryRepository,
    ):
        self.store = store
        self.refresher = refresher
        self.api = api
        self.inquiries = inquiries

    async def approve(self, inquiry_id: int, session: PortalSession) -> ApprovalReceipt:
        """
        Import one inquiry into FreshBooks.

        The caller must already have passed ``RoleExact(admin)``.

        Raises
        ------
        NotFound, AlreadyImported
            Checked before anything external happens.
        NotConnected, RefreshFailed
            No usable FreshBooks token; the inquiry is untouched.
        ExternalCreateFailed
            FreshBooks refused or was unreachable; the inquiry stays pending.
        ImportNotRecorded
            FreshBooks created the client but the inquiry could not be marked
            imported; carries the new ``external_client_id``.
        """
        # Two admins clicking "approve" at once must not create two clients.
        lock = _INQUIRY_LOCKS.setdefault(inquiry_id, asyncio.Lock())
        async with lock:
            inquiry = await self.inquiries.get(inquiry_id)
            if inquiry is None:
                raise NotFound(f"Inquiry {inquiry_id} not found")
            if inquiry.status == InquiryStatus.IMPORTED:
                raise AlreadyImported(
                    f"Inquiry {inquiry_id} was already imported as client {inquiry.external_client_id}",
                    external_client_id=inquiry.external_client_id,
                )

            bundle = await resolve_valid_token(self.store, self.refresher, session)

            external_client_id = await self.api.create_client(bundle, inquiry)

            try:
                await self.inquiries.mark_imported(inquiry_id, external_client_id)
            except Exception as exc:
                logger.error(
                    "FreshBooks client %s was created for inquiry %s but the local "
                    "transition failed; reconcile manually: %r",
                    external_client_id, inquiry_id, exc,
                )
                raise ImportNotRecorded(
                    f"FreshBooks client {external_client_id} was created but inquiry "
                    f"{inquiry_id} could not be marked imported: {exc}",
                    external_client_id=external_client_id,
                ) from exc

        logger.info("Inquiry %s imported as FreshBooks client %s", inquiry_id, external_client_id)
        return ApprovalReceipt(inquiry_id=inquiry_id, external_client_id=external_client_id)
