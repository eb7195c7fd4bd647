"""
Record and status types shared by the cache, the remote client and the orchestrator.

Timestamps are integer milliseconds since the Unix epoch.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class Origin(Enum):
    """Where a content record lives."""

    REMOTE = "remote"
    LOCAL = "local"


class Role(Enum):
    """Author of a message log entry."""

    USER = "user"
    SYSTEM = "system"


class ConnectivityState(Enum):
    """Orchestrator connectivity state.

    UNINITIALIZED: Nothing attempted yet
    INITIALIZING: Remote connection attempt in flight
    CONNECTED: Writes go to the remote store
    FALLBACK: Writes go to the local cache
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    FALLBACK = "fallback"


@dataclass
class ContentRecord:
    """A stored piece of content, addressed by remote CID or local key."""

    id: str
    payload: str
    timestamp: int
    origin: Origin
    content_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["origin"] = self.origin.value
        return data


@dataclass
class MessageRecord:
    """An entry in the append-only message log."""

    id: int
    text: str
    role: Role
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        return data


@dataclass
class AddResult:
    """Successful remote write."""

    id: str
    size: int
    success: bool = True


@dataclass
class SubmitResult:
    """Outcome of Orchestrator.submit.

    ``notice`` carries a human-readable note when the content was stored
    locally instead of remotely.
    """

    record: ContentRecord
    notice: str | None = None

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def origin(self) -> Origin:
        return self.record.origin


@dataclass
class RemoteStatus:
    """Snapshot of the remote client's connectivity."""

    connected: bool
    fallback_mode: bool
    endpoint: str | None = None
    last_error: str | None = None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class CacheStats:
    """Record counts in the local cache."""

    blob_count: int
    message_count: int
