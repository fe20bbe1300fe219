"""Shared async Redis handle with bounded round-trips.

One ``CacheClient`` is built per process at startup, connected in the
application lifespan and closed on shutdown; every component that needs the
cache receives it through its constructor.  Reconnecting after a dropped
connection is left to the underlying ``redis`` connection pool.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from credential_engine.config import settings
from credential_engine.core.errors import CacheUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheClient:
    """Thin wrapper over ``redis.asyncio.Redis`` used by every cache consumer.

    Each call is bounded by ``timeout_ms``.  Timeouts and Redis errors are
    raised as ``CacheUnavailable`` so callers can decide whether a failed
    round-trip is a miss or a retryable error.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout_ms: int | None = None,
        redis: Redis | None = None,
    ) -> None:
        self._url = url or settings.redis_url
        self._timeout = (timeout_ms or settings.cache_timeout_ms) / 1000
        self._redis = redis

    # ── Lifecycle ────────────────────────────────────────

    async def connect(self) -> None:
        """Create the connection pool and probe it once."""
        if self._redis is None:
            self._redis = Redis.from_url(self._url, decode_responses=True)
        try:
            await self._run("ping", self._redis.ping())
            logger.info("Cache connected")
        except CacheUnavailable:
            logger.warning("Cache not reachable at startup; continuing without it")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Cache connection closed")

    @property
    def connected(self) -> bool:
        return self._redis is not None

    # ── Operations ───────────────────────────────────────

    async def get(self, key: str) -> str | None:
        return await self._run("get", self._client().get(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._run("set", self._client().set(key, value, ex=ttl_seconds))

    async def delete(self, *keys: str) -> int:
        return await self._run("delete", self._client().delete(*keys))

    async def getdel(self, key: str) -> str | None:
        """Read and remove *key* in one round-trip."""
        return await self._run("getdel", self._client().getdel(key))

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", self._client().exists(key)))

    async def incr_window(self, key: str, window_seconds: int) -> int:
        """Atomically increment a counter whose lifetime is *window_seconds*.

        The first increment in a window creates the key with its expiry; later
        increments keep the existing TTL.  Both commands run in one
        ``MULTI``/``EXEC`` block.
        """

        async def _incr() -> int:
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=window_seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
            return int(count)

        return await self._run("incr", _incr())

    # ── Private helpers ──────────────────────────────────

    def _client(self) -> Redis:
        if self._redis is None:
            raise CacheUnavailable("Cache client is not connected")
        return self._redis

    async def _run(self, op: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except (RedisError, OSError, TimeoutError) as exc:
            logger.warning("Cache %s failed: %s", op, exc)
            raise CacheUnavailable(f"Cache {op} failed") from exc
