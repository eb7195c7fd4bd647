"""
Resilient IPFS Storage

Client for a content-addressable remote store with transparent fallback to
a local persistent cache.

Provides:
- RemoteStoreClient: endpoint failover, retry with linear backoff, optional pinning
- LocalCacheStore: SQLite cache of content blobs and an append-only message log
- Orchestrator: connectivity state machine routing each write and read

Usage:

    >>> from resilient_ipfs_storage import Orchestrator, StoreSettings
    >>> async with Orchestrator.from_settings(StoreSettings.from_env()) as store:
    ...     result = await store.submit("hello")
    ...     if result.origin is Origin.LOCAL:
    ...         print(result.notice)
    ...     text = await store.fetch(result.id)
    ...     history = await store.recent_history(limit=20)

Connectivity signals:

    await store.on_offline()   # route writes to the local cache immediately
    await store.on_online()    # try the remote store again
"""

from .config import CacheConfig, PinningConfig, RemoteStoreConfig, StoreSettings

# Exceptions
from .exceptions import (
    ConfigurationError,
    ConnectivityError,
    NotFoundError,
    RemoteRejectionError,
    RemoteStoreError,
    ResilientStorageError,
    StorageError,
    ValidationError,
)
from .id_utils import LOCAL_KEY_PREFIX, is_local_key, mint_local_key
from .local import LocalCacheStore
from .logging_utils import configure_structured_logging
from .orchestrator import Orchestrator
from .remote import PinningService, RemoteStoreClient
from .types import (
    AddResult,
    CacheStats,
    ConnectivityState,
    ContentRecord,
    MessageRecord,
    Origin,
    RemoteStatus,
    Role,
    SubmitResult,
)

__all__ = [
    # Core components
    "Orchestrator",
    "RemoteStoreClient",
    "LocalCacheStore",
    "PinningService",
    # Configuration
    "StoreSettings",
    "RemoteStoreConfig",
    "PinningConfig",
    "CacheConfig",
    # Types
    "AddResult",
    "CacheStats",
    "ConnectivityState",
    "ContentRecord",
    "MessageRecord",
    "Origin",
    "RemoteStatus",
    "Role",
    "SubmitResult",
    # Local keys
    "LOCAL_KEY_PREFIX",
    "is_local_key",
    "mint_local_key",
    # Logging
    "configure_structured_logging",
    # Exceptions
    "ResilientStorageError",
    "ValidationError",
    "RemoteStoreError",
    "ConnectivityError",
    "RemoteRejectionError",
    "StorageError",
    "NotFoundError",
    "ConfigurationError",
]

__version__ = "0.1.0"
