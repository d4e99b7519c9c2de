"""
Tests for FreshBooks resource calls, against a mocked HTTP transport.
"""

import json

import httpx
import pytest

from connectors.freshbooks_api import FreshBooksClient
from core.errors import ExternalCreateFailed, ExternalFetchFailed, NotConnected
from utils.schemas import PendingInquiry


def _client(handler) -> FreshBooksClient:
    return FreshBooksClient(transport=httpx.MockTransport(handler))


def _accounting(key, rows, page=1, pages=1):
    return {"response": {"result": {key: rows, "page": page, "pages": pages, "per_page": 100}}}


class TestListProjects:
    @pytest.mark.asyncio
    async def test_walks_every_page(self, make_bundle):
        pages_requested = []

        def handler(request):
            assert request.url.path == "/projects/business/77/projects"
            assert request.headers["Authorization"] == "Bearer access-1"
            page = int(request.url.params["page"])
            pages_requested.append(page)
            return httpx.Response(200, json={
                "projects": [{"id": page, "title": f"Project {page}", "client_id": 12}],
                "meta": {"page": page, "pages": 2},
            })

        projects = await _client(handler).list_projects(make_bundle())

        assert pages_requested == [1, 2]
        assert [p.title for p in projects] == ["Project 1", "Project 2"]
        assert projects[0].client_id == "12"

    @pytest.mark.asyncio
    async def test_requires_business(self, make_bundle):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(NotConnected):
            await _client(handler).list_projects(make_bundle(business_id=None))

    @pytest.mark.asyncio
    async def test_server_error_is_transient_fetch_failure(self, make_bundle):
        def handler(request):
            return httpx.Response(500, json={"message": "oops"})

        with pytest.raises(ExternalFetchFailed) as exc_info:
            await _client(handler).list_projects(make_bundle())

        assert exc_info.value.transient


class TestListInvoices:
    @pytest.mark.asyncio
    async def test_maps_amounts(self, make_bundle):
        def handler(request):
            assert request.url.path == "/accounting/account/aB3x/invoices/invoices"
            return httpx.Response(200, json=_accounting("invoices", [{
                "invoiceid": 301,
                "invoice_number": "0001",
                "customerid": 12,
                "amount": {"amount": "1500.00", "code": "USD"},
                "outstanding": {"amount": "500.00", "code": "USD"},
                "v3_status": "partial",
                "due_date": "2026-11-01",
            }]))

        invoices = await _client(handler).list_invoices(make_bundle())

        assert len(invoices) == 1
        invoice = invoices[0]
        assert invoice.id == "301"
        assert invoice.client_id == "12"
        assert invoice.amount == "1500.00"
        assert invoice.currency == "USD"
        assert invoice.outstanding == "500.00"
        assert invoice.status == "partial"

    @pytest.mark.asyncio
    async def test_requires_account(self, make_bundle):
        with pytest.raises(NotConnected):
            await FreshBooksClient().list_invoices(make_bundle(account_id=None))

    @pytest.mark.asyncio
    async def test_timeout(self, make_bundle):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalFetchFailed) as exc_info:
            await _client(handler).list_invoices(make_bundle())

        assert exc_info.value.timed_out


class TestClients:
    @pytest.mark.asyncio
    async def test_list_clients_maps_visibility(self, make_bundle):
        def handler(request):
            return httpx.Response(200, json=_accounting("clients", [
                {"id": 12, "email": "a@example.com", "fname": "Ann", "vis_state": 0},
                {"id": 13, "email": "b@example.com", "organization": "B Ltd", "vis_state": 2},
            ]))

        clients = await _client(handler).list_clients(make_bundle())

        assert [c.id for c in clients] == ["12", "13"]
        assert clients[0].first_name == "Ann"
        assert clients[1].status == "archived"

    @pytest.mark.asyncio
    async def test_create_client_from_inquiry(self, make_bundle):
        sent = {}

        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/accounting/account/aB3x/users/clients"
            sent.update(json.loads(request.content))
            return httpx.Response(200, json={"response": {"result": {"client": {"id": 9, "email": "dana@example.com"}}}})

        inquiry = PendingInquiry(
            id=7, username="Dana", email="dana@example.com",
            company_name="Dana Design", phone_number="555-0100", inquiry_details="New website",
        )
        client_id = await _client(handler).create_client(make_bundle(), inquiry)

        assert client_id == "9"
        assert sent["client"]["email"] == "dana@example.com"
        assert sent["client"]["organization"] == "Dana Design"
        assert sent["client"]["mob_phone"] == "555-0100"

    @pytest.mark.asyncio
    async def test_create_client_rejected(self, make_bundle):
        def handler(request):
            return httpx.Response(422, json={"response": {"errors": [{"message": "Invalid email"}]}})

        inquiry = PendingInquiry(id=7, username="Dana", email="not-an-email")
        with pytest.raises(ExternalCreateFailed) as exc_info:
            await _client(handler).create_client(make_bundle(), inquiry)

        assert not exc_info.value.transient

    @pytest.mark.asyncio
    async def test_create_client_without_id(self, make_bundle):
        def handler(request):
            return httpx.Response(200, json={"response": {"result": {}}})

        inquiry = PendingInquiry(id=7, username="Dana", email="dana@example.com")
        with pytest.raises(ExternalCreateFailed):
            await _client(handler).create_client(make_bundle(), inquiry)
