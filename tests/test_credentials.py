"""
Tests for the credential store and token resolution.
"""

import asyncio
import gc
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from core.credentials import CredentialStore, is_expired, resolve_valid_token
from core.errors import NotConnected, RefreshFailed


class InMemoryBackend:
    def __init__(self):
        self.rows = {}
        self.saves = []

    async def load(self, session_id):
        return self.rows.get(session_id)

    async def save(self, session_id, bundle):
        self.saves.append((session_id, bundle))
        self.rows[session_id] = bundle


class TestIsExpired:
    def test_boundary_is_expired(self, make_bundle):
        bundle = make_bundle()
        assert is_expired(bundle, now=bundle.expires_at)
        assert not is_expired(bundle, now=bundle.expires_at - timedelta(seconds=1))


class TestCredentialStore:
    def test_anonymous_session_has_no_bundle(self, anonymous):
        assert CredentialStore().get(anonymous) is None

    @pytest.mark.asyncio
    async def test_put_and_clear_write_through_backend(self, make_session, make_bundle):
        backend = InMemoryBackend()
        store = CredentialStore(backend)
        session = make_session()
        bundle = make_bundle()

        await store.put(session, bundle)
        assert store.get(session) == bundle
        assert backend.rows["sess-1"] == bundle

        await store.clear(session)
        assert store.get(session) is None
        assert backend.rows["sess-1"] is None

    @pytest.mark.asyncio
    async def test_sessions_never_share_bundles(self, make_session, make_bundle):
        store = CredentialStore()
        a = make_session(session_id="a")
        b = make_session(session_id="b")
        await store.put(a, make_bundle(access_token="for-a"))
        assert store.get(b) is None

    @pytest.mark.asyncio
    async def test_anonymous_session_cannot_hold_credentials(self, anonymous, make_bundle):
        with pytest.raises(ValueError):
            await CredentialStore().put(anonymous, make_bundle())

    @pytest.mark.asyncio
    async def test_session_lock_dropped_once_idle(self, make_session, make_bundle):
        store = CredentialStore()
        for n in range(3):
            await store.put(make_session(session_id=f"s-{n}"), make_bundle())
        gc.collect()

        assert len(store._locks) == 0

    @pytest.mark.asyncio
    async def test_held_lock_is_shared(self, make_session):
        store = CredentialStore()
        session = make_session()

        async with store.lock(session):
            gc.collect()
            assert store.lock(session) is store.lock(make_session())


class TestResolveValidToken:
    @pytest.mark.asyncio
    async def test_no_bundle_is_not_connected(self, make_session):
        refresher = AsyncMock()
        with pytest.raises(NotConnected):
            await resolve_valid_token(CredentialStore(), refresher, make_session())
        refresher.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_bundle_returned_without_refresh(self, make_session, make_bundle):
        bundle = make_bundle()
        refresher = AsyncMock()
        result = await resolve_valid_token(CredentialStore(), refresher, make_session(bundle=bundle))
        assert result is bundle
        refresher.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_bundle_is_refreshed_and_stored(self, make_session, make_bundle):
        backend = InMemoryBackend()
        store = CredentialStore(backend)
        old = make_bundle(expired=True)
        session = make_session(bundle=old)
        backend.rows["sess-1"] = old
        new = make_bundle(access_token="access-2")
        refresher = AsyncMock()
        refresher.refresh.return_value = new

        result = await resolve_valid_token(store, refresher, session)

        assert result == new
        assert store.get(session) == new
        assert backend.rows["sess-1"] == new
        refresher.refresh.assert_awaited_once_with(old)

    @pytest.mark.asyncio
    async def test_concurrent_resolves_refresh_once(self, make_session, make_bundle):
        store = CredentialStore()
        session = make_session(bundle=make_bundle(expired=True))
        new = make_bundle(access_token="access-2")
        calls = []

        async def slow_refresh(bundle):
            calls.append(bundle)
            await asyncio.sleep(0.01)
            return new

        refresher = AsyncMock()
        refresher.refresh.side_effect = slow_refresh

        first, second = await asyncio.gather(
            resolve_valid_token(store, refresher, session),
            resolve_valid_token(store, refresher, session),
        )

        assert len(calls) == 1
        assert first == new and second == new

    @pytest.mark.asyncio
    async def test_reload_picks_up_refresh_from_elsewhere(self, make_session, make_bundle):
        backend = InMemoryBackend()
        store = CredentialStore(backend)
        session = make_session(bundle=make_bundle(expired=True))
        fresh = make_bundle(access_token="from-other-worker")
        backend.rows["sess-1"] = fresh
        refresher = AsyncMock()

        result = await resolve_valid_token(store, refresher, session)

        assert result == fresh
        refresher.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_revoked_refresh_clears_bundle(self, make_session, make_bundle):
        store = CredentialStore()
        session = make_session(bundle=make_bundle(expired=True))
        refresher = AsyncMock()
        refresher.refresh.side_effect = RefreshFailed("invalid_grant", revoked=True)

        with pytest.raises(NotConnected) as exc_info:
            await resolve_valid_token(store, refresher, session)

        assert exc_info.value.reconnect_required
        assert store.get(session) is None
        assert refresher.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried_once(self, make_session, make_bundle):
        store = CredentialStore()
        session = make_session(bundle=make_bundle(expired=True))
        new = make_bundle(access_token="access-2")
        refresher = AsyncMock()
        refresher.refresh.side_effect = [RefreshFailed("503", transient=True), new]

        result = await resolve_valid_token(store, refresher, session)

        assert result == new
        assert refresher.refresh.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_failure_twice_keeps_bundle(self, make_session, make_bundle):
        store = CredentialStore()
        old = make_bundle(expired=True)
        session = make_session(bundle=old)
        refresher = AsyncMock()
        refresher.refresh.side_effect = RefreshFailed("503", transient=True)

        with pytest.raises(RefreshFailed):
            await resolve_valid_token(store, refresher, session)

        assert refresher.refresh.await_count == 2
        assert store.get(session) == old

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, make_session, make_bundle):
        store = CredentialStore()
        session = make_session(bundle=make_bundle(expired=True, refresh_token=None))
        refresher = AsyncMock()

        with pytest.raises(NotConnected):
            await resolve_valid_token(store, refresher, session)

        assert store.get(session) is None
        refresher.refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_now_controls_expiry(self, make_session, make_bundle):
        bundle = make_bundle()
        refresher = AsyncMock()
        refresher.refresh.return_value = make_bundle(access_token="later")
        later = datetime.now(timezone.utc) + timedelta(days=1)

        result = await resolve_valid_token(
            CredentialStore(), refresher, make_session(bundle=bundle), now=later,
        )
        # the refreshed bundle is itself "expired" at that instant, but is returned as-is
        assert result.access_token == "later"
