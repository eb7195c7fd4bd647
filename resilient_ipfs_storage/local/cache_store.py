"""
Local persistent cache backed by SQLite.

Holds two independent collections:
- blobs: content records keyed by CID or local key, evictable by age
- messages: append-only log with auto-incrementing ids, never evicted

Every statement runs through aiosqlite, so callers await storage work the
same way they await network calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import aiosqlite

from ..config import DEFAULT_CACHE_RETENTION_DAYS, DEFAULT_MESSAGE_LIMIT, CacheConfig
from ..exceptions import StorageError, ValidationError
from ..id_utils import content_hash
from ..types import CacheStats, ContentRecord, MessageRecord, Origin, Role, now_ms

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000

BLOB_READ_COLUMNS = ("id", "payload", "timestamp", "origin", "content_hash")
MESSAGE_READ_COLUMNS = ("id", "text", "role", "timestamp")

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS blobs (
    id TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    content_hash TEXT,
    origin TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_blobs_timestamp ON blobs(timestamp);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL,
    role TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp, id);
"""


def _row_to_blob(row: Any) -> ContentRecord:
    return ContentRecord(
        id=row[0],
        payload=row[1],
        timestamp=row[2],
        origin=Origin(row[3]),
        content_hash=row[4],
    )


def _row_to_message(row: Any) -> MessageRecord:
    return MessageRecord(id=row[0], text=row[1], role=Role(row[2]), timestamp=row[3])


class LocalCacheStore:
    """
    SQLite cache for content blobs and the message log.

    Features:
    - Single file database (or in-memory for tests)
    - Timestamp indexes for recency queries and retention purges
    - Idempotent schema creation
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the cache without opening it.

        Args:
            config: Cache configuration (in-memory defaults if None)
            clock: Millisecond clock used to stamp records
        """
        self.config = config or CacheConfig()
        self.clock = clock
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @classmethod
    async def create(cls, config: CacheConfig | None = None) -> LocalCacheStore:
        """Create and initialize a cache."""
        store = cls(config)
        await store.initialize()
        return store

    async def __aenter__(self) -> LocalCacheStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def db_path(self) -> str:
        return str(self.config.db_path)

    async def initialize(self) -> None:
        """Open the database and create tables and indexes if absent."""
        async with self._init_lock:
            if self._initialized:
                return

            try:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(self.db_path)
                await conn.executescript(_SCHEMA_SQL)
                await conn.commit()
            except (aiosqlite.Error, OSError) as e:
                raise StorageError("initialize", e, path=self.db_path) from e

            self.conn = conn
            self._initialized = True
            logger.info(f"Local cache initialized at {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self.conn is not None:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self, operation: str) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageError(operation, path=self.db_path, cause=RuntimeError("cache not initialized"))
        return self.conn

    # =========================================================================
    # Blobs
    # =========================================================================

    async def put_blob(
        self,
        content_id: str,
        payload: str,
        origin: Origin = Origin.LOCAL,
    ) -> ContentRecord:
        """Insert or replace a content record stamped with the current time."""
        if not content_id:
            raise ValidationError("id", "content id is required")

        conn = self._require_conn("put_blob")
        record = ContentRecord(
            id=content_id,
            payload=payload,
            timestamp=self.clock(),
            origin=Origin(origin),
            content_hash=content_hash(payload),
        )
        try:
            await conn.execute(
                """
                INSERT INTO blobs (id, payload, content_hash, origin, timestamp)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload = excluded.payload,
                    content_hash = excluded.content_hash,
                    origin = excluded.origin,
                    timestamp = excluded.timestamp
                """,
                (record.id, record.payload, record.content_hash, record.origin.value, record.timestamp),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError("put_blob", e, path=self.db_path) from e

        logger.debug(f"Saved blob {content_id} to local cache")
        return record

    async def get_record(self, content_id: str) -> ContentRecord | None:
        """Full content record, or None when absent."""
        conn = self._require_conn("get_blob")
        try:
            async with conn.execute(
                f"SELECT {', '.join(BLOB_READ_COLUMNS)} FROM blobs WHERE id = ?",
                (content_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError("get_blob", e, path=self.db_path) from e

        return _row_to_blob(row) if row else None

    async def get_blob(self, content_id: str) -> str | None:
        """Payload for an id, or None when absent."""
        record = await self.get_record(content_id)
        return record.payload if record else None

    async def purge_older_than(self, retention_days: int = DEFAULT_CACHE_RETENTION_DAYS) -> int:
        """Delete blobs strictly older than the retention window.

        Messages are not subject to retention.

        Returns:
            Number of blob records removed
        """
        if retention_days < 0:
            raise ValidationError("retention_days", "must not be negative", str(retention_days))

        conn = self._require_conn("purge_older_than")
        cutoff = self.clock() - retention_days * MS_PER_DAY
        try:
            cursor = await conn.execute("DELETE FROM blobs WHERE timestamp < ?", (cutoff,))
            deleted = cursor.rowcount
            await cursor.close()
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError("purge_older_than", e, path=self.db_path) from e

        logger.info(f"Purged {deleted} blob records older than {retention_days} days")
        return deleted

    # =========================================================================
    # Messages
    # =========================================================================

    async def append_message(self, text: str, role: Role | str = Role.USER) -> MessageRecord:
        """Append a message with the next sequence id and the current time."""
        conn = self._require_conn("append_message")
        role = Role(role)
        timestamp = self.clock()
        try:
            cursor = await conn.execute(
                "INSERT INTO messages (text, role, timestamp) VALUES (?, ?, ?)",
                (text, role.value, timestamp),
            )
            message_id = cursor.lastrowid
            await cursor.close()
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError("append_message", e, path=self.db_path) from e

        return MessageRecord(id=message_id, text=text, role=role, timestamp=timestamp)

    async def recent_messages(self, limit: int = DEFAULT_MESSAGE_LIMIT) -> list[MessageRecord]:
        """Up to ``limit`` newest messages, oldest first.

        One SELECT, so appends that land after the query starts are not seen.
        """
        if limit <= 0:
            return []

        conn = self._require_conn("recent_messages")
        columns = ", ".join(MESSAGE_READ_COLUMNS)
        try:
            async with conn.execute(
                f"""
                SELECT {columns} FROM (
                    SELECT {columns} FROM messages
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                )
                ORDER BY timestamp ASC, id ASC
                """,
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError("recent_messages", e, path=self.db_path) from e

        return [_row_to_message(row) for row in rows]

    async def iter_messages_by_recency(self, batch_size: int = 100) -> AsyncIterator[MessageRecord]:
        """Yield messages newest first, fetching in batches.

        The sequence is finite; call again to restart from the newest record.
        """
        conn = self._require_conn("iter_messages_by_recency")
        columns = ", ".join(MESSAGE_READ_COLUMNS)
        cursor_key: tuple[int, int] | None = None

        while True:
            try:
                if cursor_key is None:
                    sql = f"SELECT {columns} FROM messages ORDER BY timestamp DESC, id DESC LIMIT ?"
                    params: tuple[Any, ...] = (batch_size,)
                else:
                    sql = (
                        f"SELECT {columns} FROM messages "
                        "WHERE timestamp < ? OR (timestamp = ? AND id < ?) "
                        "ORDER BY timestamp DESC, id DESC LIMIT ?"
                    )
                    params = (cursor_key[0], cursor_key[0], cursor_key[1], batch_size)
                async with conn.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError("iter_messages_by_recency", e, path=self.db_path) from e

            for row in rows:
                yield _row_to_message(row)

            if len(rows) < batch_size:
                return
            last = rows[-1]
            cursor_key = (last[3], last[0])

    # =========================================================================
    # Stats
    # =========================================================================

    async def stats(self) -> CacheStats:
        """Counts of blob and message records."""
        conn = self._require_conn("stats")
        try:
            async with conn.execute(
                "SELECT (SELECT COUNT(*) FROM blobs), (SELECT COUNT(*) FROM messages)"
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError("stats", e, path=self.db_path) from e

        return CacheStats(blob_count=row[0], message_count=row[1])
