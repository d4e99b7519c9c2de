"""
HTTP-level tests: the ``require`` gate and Failure → status mapping.

The database and the FreshBooks API are replaced via dependency overrides.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import api.routes as api_routes
from api.dependencies import get_portal
from auth.dependencies import db_session, get_portal_session
from core.credentials import CredentialStore
from core.errors import ExternalFetchFailed
from core.portal import PortalService
from main import app
from utils.schemas import ExternalProject, PendingInquiry, Role


async def _fake_db():
    yield MagicMock()


@pytest.fixture
def client():
    app.dependency_overrides[db_session] = _fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def as_session():
    def _use(session):
        app.dependency_overrides[get_portal_session] = lambda: session

    return _use


@pytest.fixture
def fake_api():
    api = MagicMock()
    api.list_projects = AsyncMock(return_value=[ExternalProject(id="1", title="Site build")])
    api.list_invoices = AsyncMock(return_value=[])
    api.list_clients = AsyncMock(return_value=[])
    app.dependency_overrides[get_portal] = lambda: PortalService(CredentialStore(), MagicMock(), api)
    return api


class TestGate:
    def test_anonymous_admin_route_is_401(self, client, as_session, anonymous):
        as_session(anonymous)
        resp = client.get("/api/v1/admin/inquiries")
        assert resp.status_code == 401

    def test_customer_admin_route_is_403(self, client, as_session, make_session):
        as_session(make_session(role=Role.CUSTOMER, external_client_id="EXT-9"))
        resp = client.get("/api/v1/admin/inquiries")
        assert resp.status_code == 403

    def test_admin_lists_inquiries(self, client, as_session, make_session, monkeypatch):
        as_session(make_session(role=Role.ADMIN))
        monkeypatch.setattr(
            api_routes, "list_inquiries",
            AsyncMock(return_value=[PendingInquiry(id=7, username="Dana", email="dana@example.com")]),
        )
        resp = client.get("/api/v1/admin/inquiries")
        assert resp.status_code == 200
        assert resp.json()[0]["id"] == 7

    def test_pending_user_cannot_sync(self, client, as_session, make_session, fake_api):
        as_session(make_session(role=Role.PENDING))
        assert client.post("/api/v1/freshbooks/sync").status_code == 403
        fake_api.list_projects.assert_not_called()


class TestClientProfile:
    @pytest.fixture(autouse=True)
    def _linked_users(self, monkeypatch):
        user = SimpleNamespace(
            id=3, username="dana@example.com", email="dana@example.com", role="customer",
            external_client_id="EXT-9", company_name="Dana Design", phone_number=None,
            is_temporary_password=False, created_at=None,
        )
        monkeypatch.setattr(api_routes, "list_users_for_client", AsyncMock(return_value=[user]))

    def test_customer_sees_own_profile(self, client, as_session, make_session):
        as_session(make_session(role=Role.CUSTOMER, external_client_id="EXT-9"))
        resp = client.get("/api/v1/clients/EXT-9")
        assert resp.status_code == 200
        assert resp.json()["users"][0]["email"] == "dana@example.com"

    def test_customer_blocked_from_other_profile(self, client, as_session, make_session):
        as_session(make_session(role=Role.CUSTOMER, external_client_id="EXT-9"))
        assert client.get("/api/v1/clients/EXT-8").status_code == 403

    def test_admin_sees_any_profile(self, client, as_session, make_session):
        as_session(make_session(role=Role.ADMIN))
        assert client.get("/api/v1/clients/EXT-9").status_code == 200


class TestFreshBooksRoutes:
    def test_sync_not_connected_is_409(self, client, as_session, make_session, fake_api):
        as_session(make_session(role=Role.ADMIN, bundle=None))
        resp = client.post("/api/v1/freshbooks/sync")
        assert resp.status_code == 409
        assert resp.json()["detail"]["kind"] == "not_connected"
        assert resp.json()["detail"]["reconnect_required"] is True

    def test_sync_partial_failure_is_200(self, client, as_session, make_session, make_bundle, fake_api):
        fake_api.list_invoices.side_effect = ExternalFetchFailed("FreshBooks invoices failed (500)")
        as_session(make_session(role=Role.ADMIN, bundle=make_bundle()))

        resp = client.post("/api/v1/freshbooks/sync")

        assert resp.status_code == 200
        body = resp.json()
        assert body["projects"]["ok"] is True
        assert body["projects"]["value"][0]["title"] == "Site build"
        assert body["invoices"]["ok"] is False
        assert body["invoices"]["error"]["kind"] == "external_fetch_failed"

    def test_connection_status(self, client, as_session, make_session, make_bundle, fake_api):
        as_session(make_session(role=Role.ADMIN, bundle=make_bundle()))
        resp = client.get("/api/v1/freshbooks/connection-status")
        assert resp.status_code == 200
        assert resp.json()["connected"] is True
        assert resp.json()["account_id"] == "aB3x"

    def test_callback_without_code_redirects_with_error(self, client, as_session, make_session, fake_api):
        as_session(make_session(role=Role.ADMIN))
        resp = client.get("/api/v1/freshbooks/callback", follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/clients?freshbooks=error"


class TestHealth:
    def test_healthcheck_reports_database(self, client, monkeypatch):
        monkeypatch.setattr(api_routes, "check_database", AsyncMock())
        resp = client.get("/api/healthcheck")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "database": "ok"}
