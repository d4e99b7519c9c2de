"""
Shared fixtures: sessions, principals and token bundles.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.session import PortalSession
from utils.schemas import Principal, Role, TokenBundle


@pytest.fixture
def make_bundle():
    def _make(expired: bool = False, **fields) -> TokenBundle:
        offset = timedelta(minutes=-5) if expired else timedelta(hours=1)
        defaults = dict(
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + offset,
            scopes=["user:profile:read"],
            account_id="aB3x",
            business_id=77,
        )
        defaults.update(fields)
        return TokenBundle(**defaults)

    return _make


@pytest.fixture
def make_session():
    def _make(
        role: Role = Role.ADMIN,
        external_client_id=None,
        session_id: str = "sess-1",
        bundle=None,
        user_id: int = 1,
    ) -> PortalSession:
        return PortalSession(
            session_id=session_id,
            principal=Principal(id=user_id, role=role, external_client_id=external_client_id),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            token_bundle=bundle,
        )

    return _make


@pytest.fixture
def anonymous():
    return PortalSession.anonymous()
