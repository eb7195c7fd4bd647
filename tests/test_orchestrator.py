"""
Tests for the orchestrator state machine and routing.

Real in-memory SQLite cache, fake remote transport.
"""

import asyncio

import pytest

from resilient_ipfs_storage.config import CacheConfig, RemoteStoreConfig, StoreSettings
from resilient_ipfs_storage.exceptions import (
    ConnectivityError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from resilient_ipfs_storage.id_utils import is_local_key
from resilient_ipfs_storage.local.cache_store import LocalCacheStore
from resilient_ipfs_storage.orchestrator import FALLBACK_NOTICE, Orchestrator
from resilient_ipfs_storage.remote.client import RemoteStoreClient
from resilient_ipfs_storage.remote.transport import TransportResponseError
from resilient_ipfs_storage.types import ConnectivityState, Origin, Role

from .conftest import PRIMARY, SECONDARY, FakeNode, FakeTransportFactory


def build_orchestrator(remote_config, factory, **kwargs) -> Orchestrator:
    return Orchestrator(
        RemoteStoreClient(remote_config, transport_factory=factory),
        LocalCacheStore(CacheConfig(db_path=":memory:")),
        **kwargs,
    )


async def wait_for_state(store: Orchestrator, state: ConnectivityState, max_ticks: int = 100) -> None:
    for _ in range(max_ticks):
        if store.state is state:
            return
        await asyncio.sleep(0)


@pytest.fixture
async def orchestrator(remote_config, transport_factory):
    """Initialized orchestrator connected to the fake node."""
    store = build_orchestrator(remote_config, transport_factory)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def offline_orchestrator(remote_config, fake_node):
    """Initialized orchestrator whose endpoints are all unreachable."""
    factory = FakeTransportFactory(fake_node, unreachable={PRIMARY, SECONDARY})
    store = build_orchestrator(remote_config, factory)
    await store.initialize()
    yield store
    await store.close()


class TestInitialization:
    @pytest.mark.asyncio
    async def test_starts_uninitialized(self, remote_config, transport_factory):
        store = build_orchestrator(remote_config, transport_factory)
        assert store.state is ConnectivityState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_initialize_connected(self, orchestrator):
        assert orchestrator.state is ConnectivityState.CONNECTED

    @pytest.mark.asyncio
    async def test_initialize_all_unreachable_is_fallback(self, offline_orchestrator):
        assert offline_orchestrator.state is ConnectivityState.FALLBACK

    @pytest.mark.asyncio
    async def test_remote_backend_unavailable_skips_connection(self, remote_config, transport_factory):
        store = build_orchestrator(remote_config, transport_factory, remote_backend_available=False)

        assert await store.initialize() is ConnectivityState.FALLBACK
        assert transport_factory.created == []
        await store.close()

    @pytest.mark.asyncio
    async def test_state_is_initializing_during_attempt(self, remote_config, transport_factory):
        transport_factory.gate = asyncio.Event()
        store = build_orchestrator(remote_config, transport_factory)
        await store.cache.initialize()

        task = asyncio.ensure_future(store.reconnect())
        await wait_for_state(store, ConnectivityState.INITIALIZING)
        assert store.state is ConnectivityState.INITIALIZING

        transport_factory.gate.set()
        assert await task is ConnectivityState.CONNECTED
        await store.close()

    @pytest.mark.asyncio
    async def test_concurrent_initialize_single_attempt(self, remote_config, transport_factory):
        """Both callers observe the same state from one connection attempt."""
        store = build_orchestrator(remote_config, transport_factory)

        states = await asyncio.gather(store.initialize(), store.initialize())

        assert states == [ConnectivityState.CONNECTED, ConnectivityState.CONNECTED]
        assert transport_factory.probed_endpoints == [PRIMARY]
        await store.close()

    @pytest.mark.asyncio
    async def test_from_settings(self, transport_factory):
        settings = StoreSettings(remote=RemoteStoreConfig(fallback_endpoints=[]), cache=CacheConfig())
        async with Orchestrator.from_settings(settings, transport_factory=transport_factory) as store:
            assert store.state is ConnectivityState.CONNECTED


class TestSubmit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_rejected(self, orchestrator, fake_node, text):
        with pytest.raises(ValidationError):
            await orchestrator.submit(text)
        assert fake_node.add_calls == 0
        assert (await orchestrator.cache.stats()).message_count == 0

    @pytest.mark.asyncio
    async def test_submit_remote(self, orchestrator, fake_node):
        result = await orchestrator.submit("hello ipfs")

        assert result.origin is Origin.REMOTE
        assert result.id == FakeNode.cid_for(b"hello ipfs")
        assert not is_local_key(result.id)
        assert result.notice is None

        record = await orchestrator.cache.get_record(result.id)
        assert record.origin is Origin.REMOTE
        history = await orchestrator.recent_history()
        assert [(m.text, m.role) for m in history] == [("hello ipfs", Role.USER)]

    @pytest.mark.asyncio
    async def test_submit_in_fallback_stores_locally(self, offline_orchestrator, fake_node):
        result = await offline_orchestrator.submit("offline note")

        assert result.origin is Origin.LOCAL
        assert is_local_key(result.id)
        assert result.notice == FALLBACK_NOTICE
        assert fake_node.add_calls == 0

        history = await offline_orchestrator.recent_history()
        assert [(m.text, m.role) for m in history] == [
            ("offline note", Role.USER),
            (FALLBACK_NOTICE, Role.SYSTEM),
        ]

    @pytest.mark.asyncio
    async def test_local_round_trip(self, offline_orchestrator):
        text = "  keep   exact whitespace  "
        result = await offline_orchestrator.submit(text)
        assert await offline_orchestrator.fetch(result.id) == text

    @pytest.mark.asyncio
    async def test_retries_then_remote_success(self, orchestrator, fake_node, backoff_sleep):
        """Two network failures then success: two increasing delays, origin REMOTE."""
        fake_node.add_failures = [ConnectionRefusedError("ECONNREFUSED"), TimeoutError("timeout")]

        result = await orchestrator.submit("third time lucky")

        assert result.origin is Origin.REMOTE
        delays = [c.args[0] for c in backoff_sleep.await_args_list]
        assert len(delays) == 2
        assert delays[0] < delays[1]
        assert orchestrator.state is ConnectivityState.CONNECTED

    @pytest.mark.asyncio
    async def test_non_network_failure_falls_back_immediately(self, orchestrator, fake_node, backoff_sleep):
        fake_node.add_failures = [TransportResponseError(400, "file argument 'data' is required")]

        result = await orchestrator.submit("refused")

        assert result.origin is Origin.LOCAL
        assert fake_node.add_calls == 1
        backoff_sleep.assert_not_awaited()
        assert orchestrator.state is ConnectivityState.FALLBACK

    @pytest.mark.asyncio
    async def test_exhausted_retries_fall_back(self, orchestrator, fake_node, backoff_sleep):
        fake_node.add_failures = [TimeoutError()] * 3

        result = await orchestrator.submit("no luck")

        assert result.origin is Origin.LOCAL
        assert fake_node.add_calls == 3
        assert orchestrator.state is ConnectivityState.FALLBACK
        assert await orchestrator.fetch(result.id) == "no luck"

    @pytest.mark.asyncio
    async def test_fallback_skips_remote_until_reconnect(self, orchestrator, fake_node):
        fake_node.add_failures = [TransportResponseError(400, "bad")]
        await orchestrator.submit("first")
        calls = fake_node.add_calls

        second = await orchestrator.submit("second")

        assert second.origin is Origin.LOCAL
        assert fake_node.add_calls == calls

    @pytest.mark.asyncio
    async def test_concurrent_fallback_submits_get_distinct_keys(self, offline_orchestrator):
        results = await asyncio.gather(*(offline_orchestrator.submit(f"msg {i}") for i in range(5)))

        ids = [r.id for r in results]
        assert len(set(ids)) == 5
        assert all(r.origin is Origin.LOCAL for r in results)

    @pytest.mark.asyncio
    async def test_submit_before_initialize_goes_local(self, remote_config, transport_factory, fake_node):
        store = build_orchestrator(remote_config, transport_factory)

        result = await store.submit("early")

        assert result.origin is Origin.LOCAL
        assert fake_node.add_calls == 0
        await store.close()

    @pytest.mark.asyncio
    async def test_local_write_failure_surfaces_storage_error(self, offline_orchestrator):
        await offline_orchestrator.cache.conn.execute("DROP TABLE blobs")

        with pytest.raises(StorageError):
            await offline_orchestrator.submit("nowhere to go")

    @pytest.mark.asyncio
    async def test_each_submit_has_exactly_one_origin(self, orchestrator, fake_node):
        fake_node.add_failures = [TransportResponseError(400, "bad")]
        results = [await orchestrator.submit(f"item {i}") for i in range(3)]

        for result in results:
            assert result.origin in (Origin.REMOTE, Origin.LOCAL)
            assert is_local_key(result.id) == (result.origin is Origin.LOCAL)


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_remote(self, orchestrator):
        result = await orchestrator.submit("from the network")
        assert await orchestrator.fetch(result.id) == "from the network"

    @pytest.mark.asyncio
    async def test_fetch_requires_id(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.fetch("  ")

    @pytest.mark.asyncio
    async def test_fetch_missing_local_key(self, orchestrator, fake_node):
        with pytest.raises(NotFoundError):
            await orchestrator.fetch("local-1700000000000-deadbeef")
        assert fake_node.cat_calls == 0

    @pytest.mark.asyncio
    async def test_fetch_remote_id_has_no_local_fallback(self, orchestrator, fake_node):
        """A remote id absent from the node is not looked up in the cache."""
        await orchestrator.cache.put_blob("QmOnlyCached", "cached copy", origin=Origin.REMOTE)

        with pytest.raises(NotFoundError):
            await orchestrator.fetch("QmOnlyCached")
        assert fake_node.cat_calls == 1

    @pytest.mark.asyncio
    async def test_fetch_remote_id_while_disconnected(self, offline_orchestrator):
        with pytest.raises(ConnectivityError):
            await offline_orchestrator.fetch("QmSomething")

    @pytest.mark.asyncio
    async def test_timed_out_fetch_keeps_remote_writes(self, orchestrator, fake_node, backoff_sleep):
        """A read that times out on every attempt does not push later writes to the cache."""
        fake_node.cat_failures = [TimeoutError("timed out")] * 3

        with pytest.raises(NotFoundError):
            await orchestrator.fetch("QmMissing")

        assert orchestrator.state is ConnectivityState.CONNECTED
        assert orchestrator.remote.connected is True

        result = await orchestrator.submit("healthy network")

        assert result.origin is Origin.REMOTE
        assert fake_node.add_calls == 1
        assert orchestrator.status()["remote"]["connected"] is True


class TestConnectivitySignals:
    @pytest.mark.asyncio
    async def test_offline_signal_moves_to_fallback(self, orchestrator, fake_node):
        assert await orchestrator.on_offline() is ConnectivityState.FALLBACK

        result = await orchestrator.submit("while offline")

        assert result.origin is Origin.LOCAL
        assert fake_node.add_calls == 0

    @pytest.mark.asyncio
    async def test_online_signal_reconnects(self, remote_config, fake_node):
        factory = FakeTransportFactory(fake_node, unreachable={PRIMARY, SECONDARY})
        store = build_orchestrator(remote_config, factory)
        assert await store.initialize() is ConnectivityState.FALLBACK

        factory.unreachable.clear()
        assert await store.on_online() is ConnectivityState.CONNECTED

        result = await store.submit("back online")
        assert result.origin is Origin.REMOTE
        await store.close()

    @pytest.mark.asyncio
    async def test_online_signal_when_connected_is_noop(self, orchestrator, transport_factory):
        assert await orchestrator.on_online() is ConnectivityState.CONNECTED
        assert len(transport_factory.created) == 1

    @pytest.mark.asyncio
    async def test_reconnect_while_offline_stays_fallback(self, orchestrator, transport_factory):
        await orchestrator.set_online(False)

        assert await orchestrator.reconnect() is ConnectivityState.FALLBACK
        assert len(transport_factory.created) == 1

    @pytest.mark.asyncio
    async def test_offline_during_initialize_wins(self, remote_config, transport_factory):
        transport_factory.gate = asyncio.Event()
        store = build_orchestrator(remote_config, transport_factory)
        await store.cache.initialize()

        task = asyncio.ensure_future(store.reconnect())
        await wait_for_state(store, ConnectivityState.INITIALIZING)
        await store.on_offline()
        transport_factory.gate.set()

        assert await task is ConnectivityState.FALLBACK
        await store.close()

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_add_failure(self, orchestrator, fake_node):
        fake_node.add_failures = [TransportResponseError(400, "bad")]
        await orchestrator.submit("pushed to fallback")
        assert orchestrator.state is ConnectivityState.FALLBACK

        assert await orchestrator.reconnect() is ConnectivityState.CONNECTED
        assert (await orchestrator.submit("remote again")).origin is Origin.REMOTE


class TestHistoryAndMaintenance:
    @pytest.mark.asyncio
    async def test_recent_history_limit(self, orchestrator):
        for i in range(4):
            await orchestrator.submit(f"m{i}")

        history = await orchestrator.recent_history(limit=2)

        assert [m.text for m in history] == ["m2", "m3"]

    @pytest.mark.asyncio
    async def test_purge_expired_uses_configured_retention(self, orchestrator):
        await orchestrator.submit("fresh")
        assert await orchestrator.purge_expired() == 0

    @pytest.mark.asyncio
    async def test_status_snapshot(self, orchestrator):
        status = orchestrator.status()
        assert status["state"] == "connected"
        assert status["online"] is True
        assert status["remote"]["connected"] is True
        assert status["remote"]["endpoint"] == PRIMARY
        assert status["cache_path"] == ":memory:"
