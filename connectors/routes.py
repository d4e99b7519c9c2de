"""
FreshBooks API routes — OAuth connect/callback, status, disconnect, sync.

Route prefix: /api/v1/freshbooks

Every route is admin-only.  The OAuth callback is a browser redirect, so it
authenticates with the session cookie and answers with a redirect back to
the SPA rather than JSON.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from api.dependencies import get_portal
from api.errors import unwrap
from auth.dependencies import require
from core.access import ADMIN_ONLY
from core.portal import PortalService
from core.session import PortalSession
from utils.schemas import ConnectionStatus, ExternalClient, SyncReport

logger = logging.getLogger(__name__)

router = APIRouter(tags=["freshbooks"])

CALLBACK_REDIRECT = "/clients"


@router.get("/auth-url")
async def get_auth_url(
    _session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> Dict[str, str]:
    """
    The FreshBooks authorization URL.

    Frontend should navigate the browser to it; FreshBooks sends the user
    back to ``/callback``.
    """
    if not portal.connector.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="FreshBooks client credentials are not configured",
        )
    return {"auth_url": portal.get_authorization_url()}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> RedirectResponse:
    """Exchange the authorization code and bind the bundle to this session."""
    if error:
        logger.warning("FreshBooks authorization denied: %s", error)
        return _redirect(success=False)

    result = await portal.complete_authorization(session, code or "")
    if not result.ok:
        logger.error("FreshBooks callback failed: %s", result.error.detail)
    return _redirect(success=result.ok)


@router.get("/connection-status", response_model=ConnectionStatus)
async def connection_status(
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> ConnectionStatus:
    return portal.connection_status(session)


@router.post("/disconnect", response_model=ConnectionStatus)
async def disconnect(
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> ConnectionStatus:
    return unwrap(await portal.disconnect(session))


@router.post("/sync", response_model=SyncReport)
async def sync(
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> SyncReport:
    """
    Fetch projects and invoices concurrently.

    Partial failure is a 200: each half of the report carries its own result.
    """
    return unwrap(await portal.run_sync(session))


@router.get("/clients", response_model=List[ExternalClient])
async def list_clients(
    session: PortalSession = Depends(require(ADMIN_ONLY)),
    portal: PortalService = Depends(get_portal),
) -> List[ExternalClient]:
    return unwrap(await portal.list_external_clients(session))


def _redirect(success: bool) -> RedirectResponse:
    outcome = "connected" if success else "error"
    return RedirectResponse(
        url=f"{CALLBACK_REDIRECT}?freshbooks={outcome}",
        status_code=status.HTTP_303_SEE_OTHER,
    )
