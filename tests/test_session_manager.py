"""Tests for the SessionCache / SessionManager pair."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from credential_engine.cache.session_cache import SessionCache
from credential_engine.core.errors import CacheUnavailable, ErrorCode
from credential_engine.core.models import SessionEntry
from credential_engine.models.user import User, UserRole


@pytest.fixture
def entry() -> SessionEntry:
    return SessionEntry(
        user_id="u1",
        name="Alice Johnson",
        phone_number="+15551234567",
        country="US",
        email="alice@example.com",
        is_verified=True,
        role=UserRole.FREELANCER,
    )


@pytest_asyncio.fixture
async def stored_user(session_factory) -> User:
    user = User(
        id="u42",
        name="Carol Davis",
        phone_number="+442071234567",
        country="GB",
        email="carol@example.com",
        is_verified=False,
        role=UserRole.CLIENT,
    )
    async with session_factory() as session:
        session.add(user)
        await session.commit()
    return user


# ── Put / get / delete ───────────────────────────────────

@pytest.mark.asyncio
async def test_put_then_get_within_window(session_manager, entry, clock):
    stored = await session_manager.session_put("u1", entry, 3600)

    lookup = await session_manager.session_get("u1")

    assert lookup.hit
    assert lookup.entry == stored
    assert lookup.entry.model_dump(exclude={"cached_at", "ttl_seconds"}) == entry.model_dump(
        exclude={"cached_at", "ttl_seconds"}
    )
    assert lookup.entry.ttl_seconds == 3600
    assert lookup.entry.cached_at == clock.now


@pytest.mark.asyncio
async def test_get_after_ttl_is_a_miss(session_manager, cache, entry, clock):
    await session_manager.session_put("u1", entry, 3600)
    clock.advance(seconds=3601)

    assert await SessionCache(cache).get("u1") is None
    lookup = await session_manager.session_get("u1")
    assert not lookup.hit
    assert lookup.entry is None


@pytest.mark.asyncio
async def test_delete_then_get_is_a_miss(session_manager, entry):
    await session_manager.session_put("u1", entry, 3600)

    await session_manager.session_delete("u1")

    lookup = await session_manager.session_get("u1")
    assert lookup.entry is None
    assert not lookup.hit


@pytest.mark.asyncio
async def test_delete_is_idempotent(session_manager):
    await session_manager.session_delete("never-logged-in")
    await session_manager.session_delete("never-logged-in")


@pytest.mark.asyncio
async def test_put_overwrites_previous_snapshot(session_manager, entry):
    await session_manager.session_put("u1", entry, 3600)
    await session_manager.session_put("u1", entry.model_copy(update={"name": "Alice J."}), 60)

    lookup = await session_manager.session_get("u1")
    assert lookup.entry.name == "Alice J."
    assert lookup.entry.ttl_seconds == 60


@pytest.mark.asyncio
async def test_put_uses_default_ttl(session_manager, entry):
    stored = await session_manager.session_put("u1", entry)
    assert stored.ttl_seconds == 3600


@pytest.mark.asyncio
@pytest.mark.parametrize("ttl", [0, -5])
async def test_put_rejects_non_positive_ttl(session_manager, entry, fake_redis, ttl):
    with pytest.raises(ValueError):
        await session_manager.session_put("u1", entry, ttl)
    assert await fake_redis.exists("user:session:u1") == 0


@pytest.mark.asyncio
async def test_unreadable_snapshot_is_discarded(session_manager, fake_redis):
    await fake_redis.set("user:session:u1", "{not json", ex=60)

    lookup = await session_manager.session_get("u1")

    assert lookup.entry is None
    assert await fake_redis.exists("user:session:u1") == 0


# ── Fallback to the persistence layer ────────────────────

@pytest.mark.asyncio
async def test_miss_falls_back_to_database_and_repopulates(session_manager, stored_user):
    first = await session_manager.session_get("u42")
    assert first.source == "persistence"
    assert first.entry.email == "carol@example.com"
    assert first.entry.role is UserRole.CLIENT

    second = await session_manager.session_get("u42")
    assert second.hit
    assert second.entry.user_id == "u42"


@pytest.mark.asyncio
async def test_cache_outage_is_treated_as_miss(session_manager, fake_redis, stored_user):
    fake_redis.down = True

    lookup = await session_manager.session_get("u42")

    assert lookup.source == "persistence"
    assert lookup.entry.name == "Carol Davis"


@pytest.mark.asyncio
async def test_put_during_outage_raises(session_manager, fake_redis, entry):
    fake_redis.down = True
    with pytest.raises(CacheUnavailable):
        await session_manager.session_put("u1", entry, 60)


# ── Login and refresh rotation ───────────────────────────

@pytest.mark.asyncio
async def test_login_writes_snapshot_and_refresh_token(session_manager, stored_user, fake_redis):
    result = await session_manager.login(stored_user)

    assert result.ok
    assert result.refresh_token
    assert result.expires_in == 3600
    assert (await session_manager.session_get("u42")).hit
    stored_digest = await fake_redis.get("user:refresh:u42")
    assert stored_digest is not None
    assert stored_digest != result.refresh_token


@pytest.mark.asyncio
async def test_refresh_rotates_token(session_manager, stored_user):
    login = await session_manager.login(stored_user)

    rotated = await session_manager.rotate_refresh_token("u42", login.refresh_token)
    assert rotated.ok
    assert rotated.refresh_token != login.refresh_token

    # The old token is no longer accepted and revokes the session.
    reused = await session_manager.rotate_refresh_token("u42", login.refresh_token)
    assert reused.error is ErrorCode.REFRESH_TOKEN_INVALID
    assert not (await session_manager.session_get("u42")).hit


@pytest.mark.asyncio
async def test_refresh_without_session(session_manager):
    result = await session_manager.rotate_refresh_token("ghost", "whatever")
    assert result.error is ErrorCode.REFRESH_TOKEN_INVALID


@pytest.mark.asyncio
async def test_refresh_expires_with_its_ttl(session_manager, stored_user, clock):
    login = await session_manager.login(stored_user)
    clock.advance(seconds=7201)

    result = await session_manager.rotate_refresh_token("u42", login.refresh_token)
    assert result.error is ErrorCode.REFRESH_TOKEN_INVALID


@pytest.mark.asyncio
async def test_login_failures_block_ip_until_success(session_manager, stored_user):
    ip = "203.0.113.9"
    for _ in range(5):
        await session_manager.record_login_failure(ip)
    assert await session_manager.login_blocked(ip)

    await session_manager.login(stored_user, client_ip=ip)
    assert not await session_manager.login_blocked(ip)


@pytest.mark.asyncio
async def test_logout_drops_snapshot_and_refresh_token(session_manager, stored_user, fake_redis):
    login = await session_manager.login(stored_user)

    await session_manager.logout("u42")

    assert await fake_redis.get("user:session:u42") is None
    assert await fake_redis.get("user:refresh:u42") is None
    result = await session_manager.rotate_refresh_token("u42", login.refresh_token)
    assert result.error is ErrorCode.REFRESH_TOKEN_INVALID


@pytest.mark.asyncio
async def test_concurrent_refresh_with_same_token_only_one_wins(session_manager, stored_user):
    login = await session_manager.login(stored_user)

    results = await asyncio.gather(
        session_manager.rotate_refresh_token("u42", login.refresh_token),
        session_manager.rotate_refresh_token("u42", login.refresh_token),
    )

    assert sum(r.ok for r in results) == 1
    assert [r.error for r in results if not r.ok] == [ErrorCode.REFRESH_TOKEN_INVALID]
