"""
Orchestrator: routes writes and reads between the remote store and the local cache.

State machine:

    UNINITIALIZED -> INITIALIZING -> CONNECTED | FALLBACK
    CONNECTED -> FALLBACK    on a failed add, failed initialize, or offline signal
    FALLBACK  -> CONNECTED   on a successful reconnect (manual or online signal)

Writes go to the remote store while CONNECTED and online. When the remote
add fails (after its own retries) the content is written to the local
cache under a freshly minted ``local-`` key. Reads are routed by id
prefix: local keys come from the cache, everything else from the remote
store, with no fallback between the two namespaces.

Concurrent submits are not serialized; each one that falls back mints its
own local key.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from .config import StoreSettings
from .exceptions import NotFoundError, RemoteStoreError, StorageError, ValidationError
from .id_utils import is_local_key, mint_local_key
from .local.cache_store import LocalCacheStore
from .logging_utils import apply_logging_settings, get_storage_logger
from .remote.client import RemoteStoreClient
from .remote.transport import TransportFactory
from .types import (
    ConnectivityState,
    ContentRecord,
    MessageRecord,
    Origin,
    Role,
    SubmitResult,
)

logger = logging.getLogger(__name__)

FALLBACK_NOTICE = "Remote store unavailable. Content stored locally."


class Orchestrator:
    """Decision layer combining a RemoteStoreClient and a LocalCacheStore.

    Example:
        >>> async with Orchestrator.from_settings(StoreSettings.from_env()) as store:
        ...     result = await store.submit("hello")
        ...     print(result.origin, result.id)
        ...     history = await store.recent_history()
    """

    def __init__(
        self,
        remote: RemoteStoreClient,
        cache: LocalCacheStore,
        *,
        remote_backend_available: bool = True,
        online: bool = True,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            remote: Remote store client (owned by this orchestrator)
            cache: Local cache store
            remote_backend_available: False when no remote backend exists in
                this deployment; the orchestrator then stays in FALLBACK
            online: Initial value of the environment's online signal
        """
        self.remote = remote
        self.cache = cache
        self.remote_backend_available = remote_backend_available
        self._online = online
        self._state = ConnectivityState.UNINITIALIZED
        self._connect_task: asyncio.Future[ConnectivityState] | None = None
        self._log = get_storage_logger("orchestrator", cache_path=str(cache.db_path))

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        remote_backend_available: bool = True,
        transport_factory: TransportFactory | None = None,
    ) -> Orchestrator:
        """Build an orchestrator and its collaborators from settings.

        Also applies the logging settings (``log_json``, ``debug_mode``).
        """
        apply_logging_settings(json_output=settings.log_json, debug=settings.remote.debug_mode)
        return cls(
            RemoteStoreClient(settings.remote, transport_factory=transport_factory),
            LocalCacheStore(settings.cache),
            remote_backend_available=remote_backend_available,
        )

    async def __aenter__(self) -> Orchestrator:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def online(self) -> bool:
        return self._online

    def _transition(self, new_state: ConnectivityState, reason: str) -> None:
        old_state = self._state
        if new_state is old_state:
            return
        self._state = new_state
        self._log.info(
            f"Connectivity {old_state.value} -> {new_state.value}: {reason}",
            extra={"from_state": old_state.value, "to_state": new_state.value},
        )

    # =========================================================================
    # Lifecycle and connectivity
    # =========================================================================

    async def initialize(self) -> ConnectivityState:
        """Open the local cache and try to connect to the remote store."""
        await self.cache.initialize()
        return await self._connect("startup")

    async def reconnect(self) -> ConnectivityState:
        """Retry the remote connection, e.g. after leaving FALLBACK."""
        return await self._connect("reconnect")

    async def _connect(self, reason: str) -> ConnectivityState:
        task = self._connect_task
        if task is None:
            task = asyncio.ensure_future(self._connect_remote(reason))
            self._connect_task = task
            task.add_done_callback(self._clear_connect_task)
        return await asyncio.shield(task)

    def _clear_connect_task(self, task: asyncio.Future[ConnectivityState]) -> None:
        if self._connect_task is task:
            self._connect_task = None

    async def _connect_remote(self, reason: str) -> ConnectivityState:
        if not self.remote_backend_available:
            self._transition(ConnectivityState.FALLBACK, "remote backend not available")
            return self._state
        if not self._online:
            self._transition(ConnectivityState.FALLBACK, "environment is offline")
            return self._state
        if self._state is ConnectivityState.CONNECTED and self.remote.connected:
            return self._state

        self._transition(ConnectivityState.INITIALIZING, reason)
        connected = await self.remote.initialize()

        # An offline signal may have arrived while the attempt was in flight
        if connected and self._online:
            self._transition(ConnectivityState.CONNECTED, f"connected to {self.remote.endpoint}")
        else:
            self._transition(ConnectivityState.FALLBACK, "remote store unreachable")
        return self._state

    async def on_online(self) -> ConnectivityState:
        """Environment reports connectivity; reconnect if in FALLBACK."""
        self._online = True
        if self._state in (ConnectivityState.FALLBACK, ConnectivityState.UNINITIALIZED):
            return await self.reconnect()
        return self._state

    async def on_offline(self) -> ConnectivityState:
        """Environment reports loss of connectivity; move to FALLBACK now."""
        self._online = False
        self._transition(ConnectivityState.FALLBACK, "offline signal")
        return self._state

    async def set_online(self, online: bool) -> ConnectivityState:
        if online:
            return await self.on_online()
        return await self.on_offline()

    async def close(self) -> None:
        await self.remote.close()
        await self.cache.close()

    # =========================================================================
    # Content operations
    # =========================================================================

    async def submit(self, text: str) -> SubmitResult:
        """Store a message remotely when possible, otherwise locally.

        Raises:
            ValidationError: Blank text
            StorageError: The local fallback write failed
        """
        if text is None or not text.strip():
            raise ValidationError("text", "cannot submit empty content")

        await self.cache.initialize()

        if self._state is ConnectivityState.CONNECTED and self._online:
            try:
                added = await self.remote.add(text)
            except RemoteStoreError as e:
                logger.warning(f"Remote add failed, storing locally: {e}")
                self._transition(ConnectivityState.FALLBACK, f"add failed: {type(e).__name__}")
            else:
                record = await self._record_remote(added.id, text)
                await self._log_message(text, Role.USER)
                return SubmitResult(record=record)

        return await self._store_locally(text)

    async def _record_remote(self, cid: str, text: str) -> ContentRecord:
        try:
            return await self.cache.put_blob(cid, text, origin=Origin.REMOTE)
        except StorageError as e:
            # The content is safely stored remotely; the cache copy is optional.
            logger.warning(f"Could not cache remote record {cid}: {e}")
            return ContentRecord(
                id=cid,
                payload=text,
                timestamp=self.cache.clock(),
                origin=Origin.REMOTE,
            )

    async def _store_locally(self, text: str) -> SubmitResult:
        key = mint_local_key(self.cache.clock())
        record = await self.cache.put_blob(key, text, origin=Origin.LOCAL)
        await self._log_message(text, Role.USER)
        await self._log_message(FALLBACK_NOTICE, Role.SYSTEM)
        logger.info(f"Stored content locally as {key}")
        return SubmitResult(record=record, notice=FALLBACK_NOTICE)

    async def _log_message(self, text: str, role: Role) -> MessageRecord | None:
        try:
            return await self.cache.append_message(text, role)
        except StorageError as e:
            logger.warning(f"Could not append {role.value} message to history: {e}")
            return None

    async def fetch(self, content_id: str) -> str:
        """Read content by id from the store that owns its namespace.

        Raises:
            ValidationError: Missing id
            NotFoundError: No record behind the id
            ConnectivityError: Remote id requested while disconnected
        """
        if not content_id or not content_id.strip():
            raise ValidationError("id", "content id is required")

        if is_local_key(content_id):
            await self.cache.initialize()
            payload = await self.cache.get_blob(content_id)
            if payload is None:
                raise NotFoundError(content_id)
            return payload

        return await self.remote.get(content_id)

    async def recent_history(self, limit: int | None = None) -> list[MessageRecord]:
        """Recent messages, oldest first, for display."""
        await self.cache.initialize()
        return await self.cache.recent_messages(
            limit if limit is not None else self.cache.config.message_limit
        )

    async def purge_expired(self, retention_days: int | None = None) -> int:
        """Evict cached blobs older than the retention window."""
        await self.cache.initialize()
        return await self.cache.purge_older_than(
            retention_days if retention_days is not None else self.cache.config.retention_days
        )

    def status(self) -> dict[str, Any]:
        """Snapshot of orchestrator and remote connectivity."""
        return {
            "state": self._state.value,
            "online": self._online,
            "remote_backend_available": self.remote_backend_available,
            "remote": asdict(self.remote.get_status()),
            "cache_path": self.cache.db_path,
        }
