"""
Local persistent cache.

SQLite-backed storage for content blobs and the append-only message log.
"""

from .cache_store import LocalCacheStore

__all__ = ["LocalCacheStore"]
