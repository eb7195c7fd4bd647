"""ID utilities for the two content namespaces.

Centralizes the local key format so callers never need to construct or
parse keys directly.

Local keys: local-{timestamp_ms}-{suffix}

CIDs are base32/base58 multihash strings and never contain the ``local-``
prefix, so a single prefix test decides which store owns an id.
"""

from __future__ import annotations

import hashlib
import secrets

from .types import now_ms

LOCAL_KEY_PREFIX = "local-"
SUFFIX_BYTES = 4

_last_timestamp = 0


def mint_local_key(timestamp_ms: int | None = None) -> str:
    """Generate a new local key.

    The timestamp part never goes backwards within a process, even if the
    wall clock does.
    """
    global _last_timestamp
    ts = timestamp_ms if timestamp_ms is not None else now_ms()
    ts = max(ts, _last_timestamp)
    _last_timestamp = ts
    return f"{LOCAL_KEY_PREFIX}{ts}-{secrets.token_hex(SUFFIX_BYTES)}"


def is_local_key(content_id: str) -> bool:
    """True if the id belongs to the local namespace."""
    return content_id.startswith(LOCAL_KEY_PREFIX)


def parse_local_timestamp(key: str) -> int:
    """Extract the timestamp from a local key.

    Raises ValueError on malformed input.
    """
    try:
        if not is_local_key(key):
            raise ValueError
        ts, suffix = key[len(LOCAL_KEY_PREFIX):].split("-", 1)
        if not suffix:
            raise ValueError
        return int(ts)
    except ValueError:
        raise ValueError(f"Malformed local key: {key}") from None


def content_hash(payload: str | bytes) -> str:
    """SHA-256 hex digest of a payload."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
