"""Session manager — owns the cached session snapshot of each user.

The cache is an optimisation, never the system of record: a miss or an
unreachable cache sends ``session_get`` to the persistence layer instead of
treating the user as logged out.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credential_engine.cache import keys
from credential_engine.cache.rate_limiter import RateLimiter
from credential_engine.cache.session_cache import SessionCache
from credential_engine.config import settings
from credential_engine.core.errors import CacheUnavailable, ErrorCode, PersistenceUnavailable
from credential_engine.core.models import LoginResult, SessionEntry, SessionLookup
from credential_engine.database.repository import UserRepository
from credential_engine.models.user import User

logger = logging.getLogger(__name__)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class SessionManager:
    """Sole writer of session snapshots and their TTLs."""

    def __init__(
        self,
        session_cache: SessionCache,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: RateLimiter,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        session_ttl_seconds: int | None = None,
        refresh_ttl_seconds: int | None = None,
    ) -> None:
        self._cache = session_cache
        self._session_factory = session_factory
        self._limiter = rate_limiter
        self._clock = clock
        self._session_ttl = (
            settings.session_ttl_seconds if session_ttl_seconds is None else session_ttl_seconds
        )
        self._refresh_ttl = (
            settings.refresh_token_ttl_seconds if refresh_ttl_seconds is None else refresh_ttl_seconds
        )

    # ── Snapshot operations ──────────────────────────────

    async def session_put(
        self, user_id: str, entry: SessionEntry, ttl_seconds: int | None = None
    ) -> SessionEntry:
        """Store *entry* as the user's only snapshot, replacing any other.

        ``cached_at`` and ``ttl_seconds`` are stamped here; a non-positive TTL
        raises ``ValueError``.
        """
        ttl = self._session_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"Session TTL must be positive, got {ttl}")
        stamped = entry.model_copy(update={"cached_at": self._clock(), "ttl_seconds": ttl})
        await self._cache.put(user_id, stamped, ttl)
        return stamped

    async def session_get(self, user_id: str) -> SessionLookup:
        """Return the user's snapshot, rebuilding it from the database on a miss."""
        try:
            entry = await self._cache.get(user_id)
        except CacheUnavailable:
            logger.warning("Session cache unreachable, reading user %s from the database", user_id)
            entry = None
            cache_up = False
        else:
            cache_up = True

        if entry is not None and not entry.is_stale(self._clock()):
            return SessionLookup(entry=entry, source="cache")

        user = await self._load_user(user_id)
        if user is None:
            logger.debug("No active user %s in the database", user_id)
            return SessionLookup(entry=None)

        entry = SessionEntry.from_user(user, ttl_seconds=self._session_ttl, now=self._clock())
        if cache_up:
            try:
                await self._cache.put(user_id, entry, self._session_ttl)
            except CacheUnavailable:
                logger.warning("Could not repopulate session cache for user %s", user_id)
        return SessionLookup(entry=entry, source="persistence")

    async def session_delete(self, user_id: str) -> None:
        """Drop the snapshot and refresh token.  Deleting nothing is fine."""
        await self._cache.delete_all(user_id)
        logger.info("Session cleared for user %s", user_id)

    # ── Login / refresh ──────────────────────────────────

    async def login(self, user: User, *, client_ip: str | None = None) -> LoginResult:
        """Open a session for an already-authenticated *user*.

        Credential checking happens upstream; this writes the snapshot,
        issues a refresh token and clears the caller's failure counter.
        """
        entry = SessionEntry.from_user(user, ttl_seconds=self._session_ttl, now=self._clock())
        await self._cache.put(user.id, entry, self._session_ttl)
        refresh_token = await self._issue_refresh_token(user.id)
        if client_ip:
            await self._limiter.reset(keys.login_scope(client_ip))
        logger.info("User %s logged in", user.id)
        return LoginResult(entry=entry, refresh_token=refresh_token, expires_in=self._session_ttl)

    async def logout(self, user_id: str) -> None:
        await self.session_delete(user_id)

    async def rotate_refresh_token(self, user_id: str, presented: str) -> LoginResult:
        """Swap a valid refresh token for a new one and extend the session.

        The stored digest is taken atomically, so of two concurrent calls with
        the same token only one can win.  An unknown or mismatched token
        revokes the whole session.
        """
        stored = await self._cache.take_refresh_digest(user_id)
        if stored is None or not hmac.compare_digest(stored, _digest(presented)):
            logger.warning("Refresh token mismatch for user %s; revoking session", user_id)
            await self.session_delete(user_id)
            return LoginResult(error=ErrorCode.REFRESH_TOKEN_INVALID)

        lookup = await self.session_get(user_id)
        if lookup.entry is None:
            await self.session_delete(user_id)
            return LoginResult(error=ErrorCode.REFRESH_TOKEN_INVALID)

        entry = await self.session_put(user_id, lookup.entry)
        refresh_token = await self._issue_refresh_token(user_id)
        logger.info("Refresh token rotated for user %s", user_id)
        return LoginResult(entry=entry, refresh_token=refresh_token, expires_in=self._session_ttl)

    async def record_login_failure(self, client_ip: str) -> int:
        return await self._limiter.increment(
            keys.login_scope(client_ip), settings.login_window_seconds
        )

    async def login_blocked(self, client_ip: str) -> bool:
        return await self._limiter.is_blocked(keys.login_scope(client_ip), settings.login_threshold)

    # ── Private helpers ──────────────────────────────────

    async def _issue_refresh_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        await self._cache.put_refresh_digest(user_id, _digest(token), self._refresh_ttl)
        return token

    async def _load_user(self, user_id: str) -> User | None:
        try:
            async with self._session_factory() as session:
                return await UserRepository(session).find_by_id(user_id)
        except OperationalError as exc:
            logger.error("Persistence layer unavailable: %s", exc)
            raise PersistenceUnavailable("Persistence layer unavailable") from exc
