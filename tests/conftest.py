"""Shared fixtures: in-memory database, in-memory Redis double, fake clock."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from credential_engine.cache.client import CacheClient
from credential_engine.cache.rate_limiter import RateLimiter
from credential_engine.cache.session_cache import SessionCache
from credential_engine.models import otp, user  # noqa: F401
from credential_engine.models.base import Base
from credential_engine.services.session_manager import SessionManager
from credential_engine.services.verification import VerificationEngine


class FakeClock:
    """Settable ``now()`` shared by the engine and the Redis double."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc) -> None:
        self._ops.clear()

    def set(self, *args, **kwargs) -> FakePipeline:
        self._ops.append(("set", args, kwargs))
        return self

    def incr(self, *args, **kwargs) -> FakePipeline:
        self._ops.append(("incr", args, kwargs))
        return self

    async def execute(self) -> list:
        results = [await getattr(self._redis, op)(*a, **kw) for op, a, kw in self._ops]
        self._ops.clear()
        return results


class FakeRedis:
    """The slice of ``redis.asyncio.Redis`` the cache client uses.

    Keys expire against the injected clock.  Setting ``down`` makes every
    call raise a Redis ``ConnectionError``.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, datetime | None]] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    def _alive(self, key: str) -> bool:
        item = self._data.get(key)
        if item is None:
            return False
        _, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False
        return True

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self._data[key][0] if self._alive(key) else None

    async def set(self, key: str, value, ex: int | None = None, nx: bool = False):
        self._check()
        if nx and self._alive(key):
            return None
        expires_at = self._clock() + timedelta(seconds=ex) if ex else None
        self._data[key] = (str(value), expires_at)
        return True

    async def getdel(self, key: str) -> str | None:
        self._check()
        if not self._alive(key):
            return None
        value, _ = self._data.pop(key)
        return value

    async def incr(self, key: str) -> int:
        self._check()
        if self._alive(key):
            value, expires_at = self._data[key]
        else:
            value, expires_at = "0", None
        count = int(value) + 1
        self._data[key] = (str(count), expires_at)
        return count

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                del self._data[key]
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self._alive(key))

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        self._check()
        return FakePipeline(self)

    async def aclose(self) -> None:
        pass


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def cache(fake_redis) -> CacheClient:
    return CacheClient("redis://unused", timeout_ms=250, redis=fake_redis)


@pytest.fixture
def rate_limiter(cache) -> RateLimiter:
    return RateLimiter(cache)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def dispatcher():
    """Mocked code dispatcher; never actually sends emails."""
    mock = AsyncMock()
    mock.send_code = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def engine(session_factory, cache, rate_limiter, dispatcher, clock) -> VerificationEngine:
    return VerificationEngine(
        session_factory,
        cache,
        rate_limiter,
        dispatcher,
        clock=clock,
        resend_cooldown_seconds=0,
        verify_window_seconds=3600,
        verify_threshold=10,
        notification_timeout=1.0,
    )


@pytest.fixture
def session_manager(cache, session_factory, rate_limiter, clock) -> SessionManager:
    return SessionManager(
        SessionCache(cache),
        session_factory,
        rate_limiter,
        clock=clock,
        session_ttl_seconds=3600,
        refresh_ttl_seconds=7200,
    )
