"""
PortalService — the operation surface handed to HTTP route handlers.

Every operation returns a tagged ``Result``; expected failures never raise.
The one exception allowed out is ``AccessContractViolation``, for callers
that skipped the authorization gate.
"""

from __future__ import annotations

import logging
from typing import Optional

from connectors.base import BaseConnector
from core.access import (
    ADMIN_ONLY,
    AUTHENTICATED,
    AccessDecision,
    AccessPolicy,
    resolve_access,
)
from core.approval import ApprovalWorkflow, InquiryRepository
from core.credentials import CredentialStore, is_expired, resolve_valid_token
from core.errors import AccessContractViolation, ExchangeFailed, PortalError
from core.session import PortalSession
from core.sync import SyncOrchestrator
from utils.schemas import ConnectionStatus, Result

logger = logging.getLogger(__name__)


class PortalService:
    def __init__(
        self,
        store: CredentialStore,
        connector: BaseConnector,
        api,
        inquiries: Optional[InquiryRepository] = None,
    ):
        self.store = store
        self.connector = connector
        self.api = api
        self.inquiries = inquiries

    # ── Gate ──────────────────────────────────────────────────────────

    def resolve_access(
        self,
        session: Optional[PortalSession],
        policy: AccessPolicy,
        subject_id: Optional[str] = None,
    ) -> AccessDecision:
        return resolve_access(session, policy, subject_id)

    def _require(self, session: PortalSession, policy: AccessPolicy, operation: str) -> None:
        decision = resolve_access(session, policy)
        if not decision.allowed:
            raise AccessContractViolation(
                f"{operation} called without passing the gate ({decision.outcome.value})"
            )

    # ── Credential lifecycle ──────────────────────────────────────────

    def get_authorization_url(self) -> str:
        return self.connector.build_authorization_url()

    async def complete_authorization(self, session: PortalSession, code: str) -> Result:
        """Exchange *code* and hand the bundle to the session's store."""
        self._require(session, AUTHENTICATED, "complete_authorization")
        if not code:
            return Result.failure(ExchangeFailed("No authorization code provided").to_failure())

        try:
            bundle = await self.connector.exchange_code(code, session.principal())
        except PortalError as exc:
            logger.error("FreshBooks authorization failed for %r: %s", session, exc.detail)
            return Result.failure(exc.to_failure())

        await self.store.put(session, bundle)
        logger.info("FreshBooks connected for %r (account=%s)", session, bundle.account_id)
        return Result.success(self._status(session))

    async def disconnect(self, session: PortalSession) -> Result:
        """Best-effort revoke at FreshBooks, then forget the bundle."""
        self._require(session, AUTHENTICATED, "disconnect")
        bundle = self.store.get(session)
        if bundle is not None:
            revoked = await self.connector.revoke(bundle)
            if not revoked:
                logger.warning("FreshBooks did not confirm revocation for %r", session)
            await self.store.clear(session)
            logger.info("FreshBooks disconnected for %r", session)
        return Result.success(self._status(session))

    def connection_status(self, session: PortalSession) -> ConnectionStatus:
        return self._status(session)

    def _status(self, session: PortalSession) -> ConnectionStatus:
        bundle = self.store.get(session)
        if bundle is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            expires_at=bundle.expires_at,
            expired=is_expired(bundle),
            scopes=list(bundle.scopes),
            account_id=bundle.account_id,
        )

    # ── Handlers ──────────────────────────────────────────────────────

    async def run_sync(self, session: PortalSession) -> Result:
        self._require(session, ADMIN_ONLY, "run_sync")
        orchestrator = SyncOrchestrator(self.store, self.connector, self.api)
        try:
            report = await orchestrator.sync(session)
        except PortalError as exc:
            logger.warning("Sync aborted for %r: %s", session, exc.detail)
            return Result.failure(exc.to_failure())
        return Result.success(report)

    async def list_external_clients(self, session: PortalSession) -> Result:
        self._require(session, ADMIN_ONLY, "list_external_clients")
        try:
            bundle = await resolve_valid_token(self.store, self.connector, session)
            clients = await self.api.list_clients(bundle)
        except PortalError as exc:
            return Result.failure(exc.to_failure())
        return Result.success(clients)

    async def approve_inquiry(self, session: PortalSession, inquiry_id: int) -> Result:
        self._require(session, ADMIN_ONLY, "approve_inquiry")
        if self.inquiries is None:
            raise RuntimeError("PortalService was built without an inquiry repository")
        workflow = ApprovalWorkflow(self.store, self.connector, self.api, self.inquiries)
        try:
            receipt = await workflow.approve(inquiry_id, session)
        except PortalError as exc:
            logger.warning("Approval of inquiry %s failed: %s", inquiry_id, exc.detail)
            return Result.failure(exc.to_failure())
        return Result.success(receipt)
