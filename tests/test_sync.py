"""
Tests for the concurrent projects/invoices sync.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.credentials import CredentialStore
from core.errors import ExternalFetchFailed, NotConnected
from core.sync import SyncOrchestrator
from utils.schemas import ErrorKind, ExternalInvoice, ExternalProject


def _api(projects=None, invoices=None):
    api = MagicMock()
    api.list_projects = AsyncMock(return_value=projects or [])
    api.list_invoices = AsyncMock(return_value=invoices or [])
    return api


class TestSyncOrchestrator:
    @pytest.mark.asyncio
    async def test_both_succeed(self, make_session, make_bundle):
        bundle = make_bundle()
        api = _api(
            projects=[ExternalProject(id="1", title="Site build")],
            invoices=[ExternalInvoice(id="10", invoice_number="0001")],
        )
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=bundle))

        assert report.projects.ok and report.invoices.ok
        assert report.projects.value[0].title == "Site build"
        assert report.invoices.value[0].invoice_number == "0001"
        api.list_projects.assert_awaited_once_with(bundle)
        api.list_invoices.assert_awaited_once_with(bundle)

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_half(self, make_session, make_bundle):
        api = _api(projects=[ExternalProject(id="1")])
        api.list_invoices.side_effect = ExternalFetchFailed("FreshBooks invoices failed (500)", transient=True)
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=make_bundle()))

        assert report.projects.ok
        assert len(report.projects.value) == 1
        assert not report.invoices.ok
        assert report.invoices.error.kind is ErrorKind.EXTERNAL_FETCH_FAILED
        assert report.invoices.error.retryable

    @pytest.mark.asyncio
    async def test_timeout_reported_as_timeout_variant(self, make_session, make_bundle):
        api = _api()
        api.list_projects.side_effect = ExternalFetchFailed("timed out", timed_out=True)
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=make_bundle()))

        assert report.projects.error.kind is ErrorKind.TIMEOUT
        assert report.projects.error.variant_of is ErrorKind.EXTERNAL_FETCH_FAILED
        assert report.invoices.ok

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_fetch_failure(self, make_session, make_bundle):
        api = _api()
        api.list_invoices.side_effect = RuntimeError("boom")
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=make_bundle()))

        assert report.invoices.error.kind is ErrorKind.EXTERNAL_FETCH_FAILED
        assert "boom" in report.invoices.error.detail

    @pytest.mark.asyncio
    async def test_not_connected_before_any_fetch(self, make_session):
        api = _api()
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        with pytest.raises(NotConnected):
            await orch.sync(make_session(bundle=None))

        api.list_projects.assert_not_called()
        api.list_invoices.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once_for_both_fetches(self, make_session, make_bundle):
        fresh = make_bundle(access_token="access-2")
        refresher = AsyncMock()
        refresher.refresh.return_value = fresh
        api = _api()
        orch = SyncOrchestrator(CredentialStore(), refresher, api)

        await orch.sync(make_session(bundle=make_bundle(expired=True)))

        refresher.refresh.assert_awaited_once()
        api.list_projects.assert_awaited_once_with(fresh)
        api.list_invoices.assert_awaited_once_with(fresh)

    @pytest.mark.asyncio
    async def test_fetches_run_concurrently(self, make_session, make_bundle):
        invoices_started = asyncio.Event()
        projects_started = asyncio.Event()

        async def projects(_bundle):
            projects_started.set()
            await asyncio.wait_for(invoices_started.wait(), timeout=1)
            return []

        async def invoices(_bundle):
            invoices_started.set()
            await asyncio.wait_for(projects_started.wait(), timeout=1)
            return []

        api = MagicMock()
        api.list_projects = projects
        api.list_invoices = invoices
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=make_bundle()))

        assert report.projects.ok and report.invoices.ok

    @pytest.mark.asyncio
    async def test_cancelled_fetch_becomes_fetch_failure(self, make_session, make_bundle):
        api = _api(projects=[ExternalProject(id="1")])
        api.list_invoices.side_effect = asyncio.CancelledError()
        orch = SyncOrchestrator(CredentialStore(), AsyncMock(), api)

        report = await orch.sync(make_session(bundle=make_bundle()))

        assert report.projects.ok
        assert len(report.projects.value) == 1
        assert not report.invoices.ok
        assert report.invoices.error.kind is ErrorKind.EXTERNAL_FETCH_FAILED
        assert report.invoices.error.detail
