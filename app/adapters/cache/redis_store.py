"""Redis implementation of the remote cache store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.adapters.cache.base import AbstractRemoteStore, RemoteResult
from app.core.config import RedisSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "the shared tier is not usable right now"
_REMOTE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisRemoteStore(AbstractRemoteStore):
    """Remote store backed by ``redis.asyncio``.

    The client is created lazily by redis-py, so building this object never
    touches the network. Connection, timeout and protocol errors are returned
    as failed results.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def _call(self, op: str, awaitable: Awaitable[T]) -> RemoteResult[T]:
        try:
            return RemoteResult.success(await awaitable)
        except _REMOTE_ERRORS as exc:
            logger.debug(
                "redis.call_failed",
                extra={"op": op, "error_type": type(exc).__name__},
            )
            return RemoteResult.failure(f"{type(exc).__name__}: {exc}")

    async def get(self, key: str) -> RemoteResult[str]:
        return await self._call("get", self._client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int) -> RemoteResult[bool]:
        return await self._call("set", self._client.set(key, value, ex=ttl_seconds))

    async def delete(self, *keys: str) -> RemoteResult[int]:
        if not keys:
            return RemoteResult.success(0)
        return await self._call("delete", self._client.delete(*keys))

    async def keys(self, pattern: str) -> RemoteResult[list[str]]:
        return await self._call("keys", self._client.keys(pattern))

    async def ping(self) -> RemoteResult[bool]:
        return await self._call("ping", self._client.ping())

    async def info(self, section: str) -> RemoteResult[dict[str, Any]]:
        return await self._call("info", self._client.info(section))

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except _REMOTE_ERRORS as exc:
            logger.warning("redis.close_failed", extra={"error_type": type(exc).__name__})


def build_remote_store(redis_settings: RedisSettings) -> RedisRemoteStore | None:
    """Create the Redis store from settings.

    Args:
        redis_settings: Resolved Redis settings.

    Returns:
        RedisRemoteStore, or None when Redis is disabled.
    """
    if not redis_settings.enabled:
        logger.info("redis.disabled")
        return None

    common: dict[str, Any] = {
        "decode_responses": True,
        "socket_timeout": redis_settings.socket_timeout_seconds,
        "socket_connect_timeout": redis_settings.socket_timeout_seconds,
    }

    if redis_settings.url:
        client = redis.from_url(redis_settings.url, **common)
    else:
        client = redis.Redis(
            host=redis_settings.host,
            port=redis_settings.port,
            username=redis_settings.username,
            password=redis_settings.password,
            db=redis_settings.db,
            ssl=redis_settings.tls,
            **common,
        )

    logger.info(
        "redis.configured",
        extra={
            "from_url": bool(redis_settings.url),
            "host": None if redis_settings.url else redis_settings.host,
            "port": None if redis_settings.url else redis_settings.port,
            "tls": redis_settings.tls,
        },
    )
    return RedisRemoteStore(client)
