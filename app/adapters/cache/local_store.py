"""In-process TTL store used as the cache fallback tier.

Thread-safe and clock-agnostic: callers pass ``now`` so the cache service
stays the single owner of time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Container for cached values with expiration metadata."""

    data: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LocalCacheStore:
    """Thread-safe, in-memory map of namespaced keys to ``CacheEntry``.

    Expired entries are not returned but stay in memory until ``sweep`` (or
    an overwrite/delete) removes them.
    """

    def __init__(self) -> None:
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"LocalCacheStore(size={len(self._store)}, hits={self._hits}, misses={self._misses})"

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str, now: float) -> CacheEntry | None:
        """Return the live entry for key, or None if missing/expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired(now):
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._store[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix; returns how many were removed."""
        with self._lock:
            doomed = [k for k in self._store if k.startswith(prefix)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def sweep(self, now: float) -> int:
        """Remove expired entries; returns how many were removed."""
        with self._lock:
            expired = [k for k, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("cache.local_swept", extra={"removed": len(expired)})
        return len(expired)

    def stats(self) -> dict[str, int]:
        """Return lightweight counters without exposing values."""
        with self._lock:
            return {
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
            }
