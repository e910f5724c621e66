"""Two-tier cache: shared Redis first, in-process store as fallback.

The service tracks whether the remote tier is usable. Any failed remote call
flips ``remote_available`` to False and triggers one health probe; while
degraded, operations go straight to the local store and only a probe (run at
most every ``probe_interval_seconds``) can bring the remote back.

Values travel in a JSON envelope ``{"data", "stored_at", "expires_at"}``.
Remote reads honor both Redis's native TTL and the envelope's ``expires_at``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from app.adapters.cache.base import AbstractRemoteStore, RemoteResult
from app.adapters.cache.local_store import CacheEntry, LocalCacheStore
from app.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "app:cache"
DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CacheStats:
    """Introspection snapshot; ``remote_size`` is None when it could not be read."""

    remote_available: bool
    local_size: int
    remote_size: int | None = None


def format_key(key: str, namespace: str) -> str:
    return f"{namespace}:{key}"


def _encode_envelope(data: Any, stored_at: float, expires_at: float) -> str:
    return json.dumps({"data": data, "stored_at": stored_at, "expires_at": expires_at})


def _parse_keyspace(info: dict[str, Any]) -> int | None:
    """Sum the ``keys`` count across ``dbN`` sections of INFO keyspace."""
    total = None
    for section, stats in info.items():
        if not section.startswith("db"):
            continue
        if isinstance(stats, dict) and "keys" in stats:
            total = (total or 0) + int(stats["keys"])
    return total


class TieredCacheService:
    """Read/write cache with a preferred remote store and a local fallback.

    Attributes:
        namespace: Default key namespace.
        default_ttl: TTL in seconds used when callers omit one.
        use_local_fallback: Default for the per-call fallback switch.
    """

    def __init__(
        self,
        remote: AbstractRemoteStore | None = None,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        use_local_fallback: bool = True,
        cleanup_interval_seconds: float = 60.0,
        probe_interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_ttl < 1:
            raise ValueError("default_ttl must be >= 1")

        self.namespace = namespace
        self.default_ttl = default_ttl
        self.use_local_fallback = use_local_fallback
        self._remote = remote
        self._local = LocalCacheStore()
        self._clock = clock
        self._probe_interval = probe_interval_seconds
        self._remote_available = False
        self._last_probe_at: float | None = None
        self._probe_lock = asyncio.Lock()
        self._cleanup = PeriodicTask("cache.cleanup", self.sweep_local, cleanup_interval_seconds)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TieredCacheService(namespace={self.namespace!r}, default_ttl={self.default_ttl}, "
            f"remote_available={self._remote_available}, local_size={len(self._local)})"
        )

    @property
    def remote_available(self) -> bool:
        return self._remote_available

    # ------------------------------------------------------------------
    # availability state machine
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Ping the remote store and record the outcome.

        This is the only path that can flip ``remote_available`` to True.
        """
        self._last_probe_at = self._clock()
        if self._remote is None:
            self._remote_available = False
            return False

        result = await self._remote.ping()
        was_available = self._remote_available
        self._remote_available = result.ok
        if result.ok and not was_available:
            logger.info("cache.remote_recovered")
        elif not result.ok:
            logger.warning("cache.remote_probe_failed", extra={"reason": result.error})
        return self._remote_available

    def _probe_due(self) -> bool:
        if self._remote is None or self._remote_available:
            return False
        return self._last_probe_at is None or self._clock() - self._last_probe_at >= self._probe_interval

    async def _ensure_probed(self) -> None:
        """Re-probe a degraded remote once the probe interval has elapsed.

        Concurrent callers share one probe: whoever waited on the lock
        re-checks and skips if the probe already ran.
        """
        if not self._probe_due():
            return
        async with self._probe_lock:
            if self._probe_due():
                await self.probe()

    async def _degrade(self, op: str, result: RemoteResult, target: str) -> None:
        self._remote_available = False
        logger.warning(
            "cache.remote_unavailable",
            extra={"op": op, "target": target, "reason": result.error},
        )
        await self.probe()

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def get(
        self,
        key: str,
        *,
        namespace: str | None = None,
        use_local_fallback: bool | None = None,
    ) -> Any | None:
        """Return the cached value for key, or None on a miss.

        Args:
            key: Raw key (namespace is prepended).
            namespace: Overrides the default namespace.
            use_local_fallback: Overrides the default fallback switch.

        Returns:
            The stored data, or None.
        """
        formatted = format_key(key, namespace or self.namespace)
        fallback = self.use_local_fallback if use_local_fallback is None else use_local_fallback
        await self._ensure_probed()

        if self._remote is not None and self._remote_available:
            result = await self._remote.get(formatted)
            if result.ok:
                data = self._decode_remote(formatted, result.value)
                if data is not None:
                    logger.debug("cache.hit", extra={"cache_key": formatted, "tier": "remote"})
                    return data
            else:
                await self._degrade("get", result, formatted)

        if fallback:
            entry = self._local.get(formatted, self._clock())
            if entry is not None:
                logger.debug("cache.hit", extra={"cache_key": formatted, "tier": "local"})
                return entry.data

        logger.debug("cache.miss", extra={"cache_key": formatted})
        return None

    def _decode_remote(self, formatted: str, raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            data = envelope["data"]
            expires_at = float(envelope.get("expires_at", float("inf")))
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(
                "cache.remote_decode_failed",
                extra={"cache_key": formatted, "error_type": type(exc).__name__},
            )
            return None
        if self._clock() >= expires_at:
            return None
        return data

    async def set(
        self,
        key: str,
        data: Any,
        *,
        ttl: int | None = None,
        namespace: str | None = None,
        use_local_fallback: bool | None = None,
    ) -> bool:
        """Store data under key.

        The value must be JSON-serializable; a non-serializable value raises
        ``TypeError`` before any tier is touched.

        Returns:
            True if the remote or the local tier accepted the write.

        Raises:
            ValueError: If ttl is given and below 1 second.
        """
        if ttl is not None and ttl < 1:
            raise ValueError("ttl must be >= 1")
        ttl_seconds = self.default_ttl if ttl is None else ttl
        formatted = format_key(key, namespace or self.namespace)
        fallback = self.use_local_fallback if use_local_fallback is None else use_local_fallback

        now = self._clock()
        expires_at = now + ttl_seconds
        payload = _encode_envelope(data, now, expires_at)
        await self._ensure_probed()

        stored = False
        if self._remote is not None and self._remote_available:
            result = await self._remote.set(formatted, payload, ttl_seconds)
            if result.ok:
                stored = True
            else:
                await self._degrade("set", result, formatted)

        if fallback:
            self._local.set(formatted, CacheEntry(data=data, stored_at=now, expires_at=expires_at))
            stored = True

        logger.debug(
            "cache.set",
            extra={"cache_key": formatted, "ttl_s": ttl_seconds, "stored": stored},
        )
        return stored

    async def delete(self, key: str, namespace: str | None = None) -> bool:
        """Remove key from both tiers.

        Returns:
            True unless a remote delete was attempted and failed.
        """
        formatted = format_key(key, namespace or self.namespace)
        await self._ensure_probed()

        remote_ok = True
        if self._remote is not None and self._remote_available:
            result = await self._remote.delete(formatted)
            if not result.ok:
                remote_ok = False
                await self._degrade("delete", result, formatted)

        self._local.delete(formatted)
        return remote_ok or not self._remote_available

    async def clear(self, namespace: str | None = None) -> bool:
        """Remove every key in namespace from both tiers.

        Returns:
            True unless a remote step was attempted and failed.
        """
        ns = namespace or self.namespace
        await self._ensure_probed()

        remote_ok = True
        if self._remote is not None and self._remote_available:
            found = await self._remote.keys(f"{ns}:*")
            if not found.ok:
                remote_ok = False
                await self._degrade("clear", found, ns)
            elif found.value:
                deleted = await self._remote.delete(*found.value)
                if not deleted.ok:
                    remote_ok = False
                    await self._degrade("clear", deleted, ns)

        removed = self._local.delete_prefix(f"{ns}:")
        logger.info("cache.cleared", extra={"namespace": ns, "local_removed": removed})
        return remote_ok or not self._remote_available

    async def get_stats(self) -> CacheStats:
        remote_size = None
        if self._remote is not None and self._remote_available:
            result = await self._remote.info("keyspace")
            if result.ok and isinstance(result.value, dict):
                remote_size = _parse_keyspace(result.value)
            elif not result.ok:
                await self._degrade("info", result, "keyspace")

        return CacheStats(
            remote_available=self._remote_available,
            local_size=len(self._local),
            remote_size=remote_size,
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def sweep_local(self) -> int:
        """Drop expired entries from the local store."""
        return self._local.sweep(self._clock())

    def start(self) -> None:
        """Start the local sweep; requires a running event loop."""
        self._cleanup.start()

    async def stop(self) -> None:
        """Stop the local sweep and release the remote client."""
        self._cleanup.stop()
        if self._remote is not None:
            await self._remote.close()
        self._remote_available = False
