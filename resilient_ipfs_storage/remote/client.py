"""
Remote content store client.

Provides a resilient interface to an IPFS HTTP API with:
- Endpoint selection in fixed priority order with a liveness probe
- Single-flight initialization (concurrent callers share one attempt)
- Retry with linear backoff for network-class failures
- Best-effort pinning to a secondary service

The client never falls back to local storage itself; it raises a
classified error and leaves that decision to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import RemoteStoreConfig
from ..exceptions import (
    ConnectivityError,
    NotFoundError,
    RemoteRejectionError,
    ValidationError,
)
from ..logging_utils import set_debug_mode
from ..resilience import RetryConfig, is_network_error, retry_with_backoff
from ..types import AddResult, RemoteStatus
from .pinning import PinningService
from .transport import RemoteTransport, TransportFactory, http_transport_factory

logger = logging.getLogger(__name__)


class RemoteStoreClient:
    """Client for a content-addressable remote store.

    Example:
        >>> client = RemoteStoreClient(RemoteStoreConfig(host="127.0.0.1"))
        >>> if await client.initialize():
        ...     result = await client.add("hello")
        ...     text = await client.get(result.id)
    """

    def __init__(
        self,
        config: RemoteStoreConfig | None = None,
        transport_factory: TransportFactory | None = None,
        pinning: PinningService | None = None,
    ) -> None:
        """Initialize the client without connecting.

        Args:
            config: Remote store configuration (defaults if None)
            transport_factory: Builds a transport for (endpoint, timeout_seconds)
            pinning: Secondary pinning service (built from config if None)
        """
        self.config = config or RemoteStoreConfig()
        self._transport_factory = transport_factory or http_transport_factory
        self._pinning = pinning or PinningService(
            self.config.pinning, timeout=self.config.timeout_ms / 1000
        )
        self.retry_config = RetryConfig(
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_delay_ms / 1000,
        )

        self._transport: RemoteTransport | None = None
        self._endpoint: str | None = None
        self._connected = False
        self._attempted = False
        self._last_error: BaseException | None = None
        self._init_task: asyncio.Future[bool] | None = None

        if self.config.debug_mode:
            set_debug_mode(True)
            logger.debug(f"Remote store client configured: {self.config.summary()}")

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def endpoint(self) -> str | None:
        return self._endpoint if self._connected else None

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    # =========================================================================
    # Connection management
    # =========================================================================

    async def initialize(self) -> bool:
        """Connect to the first reachable endpoint.

        Returns True when connected. Failure is not an exception: the client
        stays disconnected and ``get_status()`` reports the last error.
        Calls made while an attempt is in flight await that same attempt.
        """
        if self._connected:
            return True

        task = self._init_task
        if task is None:
            task = asyncio.ensure_future(self._connect_first_available())
            self._init_task = task
            task.add_done_callback(self._clear_init_task)

        return await asyncio.shield(task)

    def _clear_init_task(self, task: asyncio.Future[bool]) -> None:
        if self._init_task is task:
            self._init_task = None

    async def _connect_first_available(self) -> bool:
        self._attempted = True
        await self._drop_transport()
        timeout = self.config.timeout_ms / 1000

        for endpoint in self.config.candidate_endpoints():
            transport = self._transport_factory(endpoint, timeout)
            try:
                node = await transport.identity()
            except Exception as e:
                logger.warning(f"Failed to connect to {endpoint}: {e}")
                self._last_error = e
                await self._close_quietly(transport)
                continue

            self._transport = transport
            self._endpoint = endpoint
            self._connected = True
            self._last_error = None
            node_id = node.get("ID", "unknown") if isinstance(node, dict) else "unknown"
            logger.info(f"Connected to remote store at {endpoint} (node {node_id})")
            return True

        self._connected = False
        logger.warning("All remote store endpoints unreachable, remote writes unavailable")
        return False

    async def _drop_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._connected = False
        self._endpoint = None
        if transport is not None:
            await self._close_quietly(transport)

    @staticmethod
    async def _close_quietly(transport: RemoteTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Error closing transport for {transport.endpoint}: {e}")

    def _require_connection(self) -> RemoteTransport:
        if not self._connected or self._transport is None:
            raise ConnectivityError(self._endpoint)
        return self._transport

    async def close(self) -> None:
        """Close the active connection. Safe to call more than once."""
        await self._drop_transport()

    # =========================================================================
    # Content operations
    # =========================================================================

    async def add(self, payload: str | bytes, **options: Any) -> AddResult:
        """Store content and return its CID.

        Raises:
            ValidationError: Empty or blank payload (before any I/O)
            ConnectivityError: Not connected, or network failures outlasted retries
            RemoteRejectionError: Remote refused the write; not retried
        """
        if payload is None or not payload.strip():
            raise ValidationError("payload", "cannot add empty data")
        data = payload.encode("utf-8") if isinstance(payload, str) else payload

        transport = self._require_connection()
        endpoint = self._endpoint
        logger.debug(f"Adding {len(data)} bytes via {endpoint}")

        try:
            result = await retry_with_backoff(
                transport.add,
                data,
                config=self.retry_config,
                context_msg=f"add via {endpoint}",
                **options,
            )
        except Exception as e:
            self._last_error = e
            if is_network_error(e):
                self._connected = False
                raise ConnectivityError(endpoint, e) from e
            raise RemoteRejectionError(endpoint, e, status=getattr(e, "status_code", None)) from e

        cid = result.get("Hash") if isinstance(result, dict) else None
        if not cid:
            error = ValueError(f"add response has no content identifier: {result!r}")
            self._last_error = error
            raise RemoteRejectionError(endpoint, error)

        size = int(result.get("Size", len(data)))
        logger.debug(f"Added content {cid} ({size} bytes)")

        await self._pin_best_effort(cid)
        return AddResult(id=cid, size=size)

    async def _pin_best_effort(self, cid: str) -> None:
        if not self._pinning.enabled:
            return
        try:
            await self._pinning.pin(cid)
        except Exception as e:
            logger.warning(f"Secondary pin for {cid} failed: {e}")

    async def get(self, cid: str) -> str:
        """Retrieve content by CID.

        Content is decoded as UTF-8; bytes that are not valid UTF-8 are
        replaced with U+FFFD. A failed read leaves the connection as it is.

        Raises:
            ValidationError: Missing id
            ConnectivityError: Not connected
            NotFoundError: Content could not be retrieved after retries
        """
        if not cid or not cid.strip():
            raise ValidationError("id", "content id is required")

        transport = self._require_connection()
        endpoint = self._endpoint
        logger.debug(f"Retrieving {cid} via {endpoint}")

        try:
            data = await retry_with_backoff(
                transport.cat,
                cid,
                config=self.retry_config,
                context_msg=f"get {cid}",
            )
        except Exception as e:
            self._last_error = e
            raise NotFoundError(cid, e) from e

        return data.decode("utf-8", errors="replace")

    def get_status(self) -> RemoteStatus:
        """Snapshot of connectivity for display and diagnostics."""
        return RemoteStatus(
            connected=self._connected,
            fallback_mode=self._attempted and not self._connected,
            endpoint=self.endpoint,
            last_error=str(self._last_error) if self._last_error else None,
            config=self.config.summary(),
        )
