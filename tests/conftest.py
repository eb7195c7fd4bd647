"""
Shared test configuration and fixtures.

Provides an in-process fake of the IPFS HTTP API so the remote client and
orchestrator can be tested without a running node, plus an in-memory
SQLite cache.
"""

import asyncio
import hashlib
from unittest.mock import AsyncMock

import pytest

from resilient_ipfs_storage import resilience
from resilient_ipfs_storage.config import CacheConfig, RemoteStoreConfig
from resilient_ipfs_storage.local.cache_store import LocalCacheStore
from resilient_ipfs_storage.remote.transport import RemoteTransport, TransportResponseError

PRIMARY = "http://localhost:5001"
SECONDARY = "https://ipfs.infura.io:5001"


class FakeNode:
    """
    Shared content store behind every fake transport.

    Queue exceptions in ``add_failures`` / ``cat_failures`` to make the next
    calls fail in order.
    """

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.add_failures: list[Exception] = []
        self.cat_failures: list[Exception] = []
        self.add_calls = 0
        self.cat_calls = 0

    @staticmethod
    def cid_for(data: bytes) -> str:
        return "Qm" + hashlib.sha256(data).hexdigest()[:44]


class FakeTransport(RemoteTransport):
    """Transport that talks to a FakeNode instead of HTTP."""

    def __init__(
        self,
        endpoint: str,
        timeout: float,
        node: FakeNode,
        probe_error: Exception | None,
        gate: asyncio.Event | None = None,
    ):
        self.endpoint = endpoint
        self.gate = gate
        self.timeout = timeout
        self.node = node
        self.probe_error = probe_error
        self.closed = False

    async def identity(self):
        # Yield so concurrent callers can interleave with the probe
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if self.probe_error:
            raise self.probe_error
        return {"ID": f"node-{self.endpoint}"}

    async def add(self, data: bytes, **options):
        self.node.add_calls += 1
        if self.node.add_failures:
            raise self.node.add_failures.pop(0)
        cid = FakeNode.cid_for(data)
        self.node.blobs[cid] = data
        return {"Name": cid, "Hash": cid, "Size": str(len(data))}

    async def cat(self, cid: str) -> bytes:
        self.node.cat_calls += 1
        if self.node.cat_failures:
            raise self.node.cat_failures.pop(0)
        if cid not in self.node.blobs:
            raise TransportResponseError(500, "merkledag: not found")
        return self.node.blobs[cid]

    async def close(self):
        self.closed = True


class FakeTransportFactory:
    """Creates FakeTransports; endpoints in ``unreachable`` fail their probe."""

    def __init__(self, node: FakeNode | None = None, unreachable: set[str] | None = None):
        self.node = node or FakeNode()
        self.unreachable = unreachable if unreachable is not None else set()
        self.created: list[FakeTransport] = []
        # Set to an unset Event to hold every probe until the test releases it
        self.gate: asyncio.Event | None = None

    def __call__(self, endpoint: str, timeout: float) -> FakeTransport:
        probe_error = None
        if endpoint in self.unreachable:
            probe_error = ConnectionRefusedError(f"connect ECONNREFUSED {endpoint}")
        transport = FakeTransport(endpoint, timeout, self.node, probe_error, self.gate)
        self.created.append(transport)
        return transport

    @property
    def probed_endpoints(self) -> list[str]:
        return [t.endpoint for t in self.created]


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def transport_factory(fake_node):
    return FakeTransportFactory(fake_node)


@pytest.fixture
def remote_config():
    """Two endpoints, fast retries, no pinning."""
    return RemoteStoreConfig(
        host="localhost",
        port=5001,
        retry_attempts=3,
        retry_delay_ms=100,
        fallback_endpoints=[SECONDARY],
    )


@pytest.fixture
def backoff_sleep(monkeypatch):
    """Replace backoff delays with a recording mock."""
    sleep = AsyncMock()
    monkeypatch.setattr(resilience, "backoff_sleep", sleep)
    return sleep


@pytest.fixture
async def cache():
    """Initialized in-memory cache."""
    store = await LocalCacheStore.create(CacheConfig(db_path=":memory:"))
    yield store
    await store.close()


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()
