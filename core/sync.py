"""
Sync orchestrator — pull projects and invoices from FreshBooks concurrently.

Each resource class succeeds or fails on its own: an invoices outage never
hides a good projects result.  A sync is a full replace of the caller's view;
nothing is reconciled against earlier snapshots.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from core.credentials import CredentialStore, TokenRefresher, resolve_valid_token
from core.errors import PortalError
from core.session import PortalSession
from utils.schemas import ErrorKind, Failure, Result, SyncReport, TokenBundle

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    def __init__(self, store: CredentialStore, refresher: TokenRefresher, api):
        """
        Parameters
        ----------
        store     : session-owned credential store
        refresher : OAuth exchange used when the bundle has expired
        api       : FreshBooks resource client (``list_projects``, ``list_invoices``)
        """
        self.store = store
        self.refresher = refresher
        self.api = api

    async def sync(self, session: PortalSession) -> SyncReport:
        """
        Fetch every resource class for the session's connected account.

        Raises ``NotConnected`` (or ``RefreshFailed``) before any resource
        call is made when no valid token can be resolved.
        """
        bundle = await resolve_valid_token(self.store, self.refresher, session)

        fetchers: List[Tuple[str, Callable[[TokenBundle], Awaitable[Any]]]] = [
            ("projects", self.api.list_projects),
            ("invoices", self.api.list_invoices),
        ]
        logger.info("[Sync] session %s — fetching %s", session.session_id, [n for n, _ in fetchers])

        # Shielded: if the client goes away mid-sync the calls still finish,
        # their results are just dropped with the cancelled request.
        gathered = asyncio.gather(
            *[fetch(bundle) for _, fetch in fetchers],
            return_exceptions=True,
        )
        outcomes = await asyncio.shield(gathered)

        results: Dict[str, Result] = {}
        for (name, _), outcome in zip(fetchers, outcomes):
            results[name] = self._partition(name, outcome)

        return SyncReport(projects=results["projects"], invoices=results["invoices"])

    @staticmethod
    def _partition(name: str, outcome: Any) -> Result:
        if isinstance(outcome, PortalError):
            logger.warning("[Sync] %s failed: %s", name, outcome.detail)
            return Result.failure(outcome.to_failure())
        if isinstance(outcome, BaseException):
            # includes CancelledError from a fetch cancelled on its own
            logger.error("[Sync] %s raised: %r", name, outcome)
            return Result.failure(
                Failure(kind=ErrorKind.EXTERNAL_FETCH_FAILED, detail=str(outcome) or type(outcome).__name__)
            )
        logger.info("[Sync] %s: %d record(s)", name, len(outcome))
        return Result.success(outcome)
