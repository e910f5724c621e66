"""Remote cache store interface.

The cache service talks to its shared tier only through this surface. Every
call returns a ``RemoteResult`` instead of raising, so the caller can turn a
failure into a degraded-mode transition without exception control flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteResult(Generic[T]):
    """Outcome of a remote store call: ``Ok(value)`` or ``Err(error)``."""

    ok: bool
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "RemoteResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "RemoteResult[T]":
        return cls(ok=False, error=error)


class AbstractRemoteStore(ABC):
    """Minimal key-value capability surface consumed by the cache service."""

    @abstractmethod
    async def get(self, key: str) -> RemoteResult[str]:
        """Read a raw value; ``value`` is None on a miss."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> RemoteResult[bool]:
        """Write a raw value that the store expires after ``ttl_seconds``."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> RemoteResult[int]:
        """Delete keys; ``value`` is the number removed."""
        raise NotImplementedError

    @abstractmethod
    async def keys(self, pattern: str) -> RemoteResult[list[str]]:
        """List keys matching a glob pattern."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> RemoteResult[bool]:
        """Lightweight health probe."""
        raise NotImplementedError

    @abstractmethod
    async def info(self, section: str) -> RemoteResult[dict[str, Any]]:
        """Server info for ``section`` as a mapping."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections (no-op by default)."""
        return None
