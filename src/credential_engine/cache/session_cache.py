"""TTL-scoped cache of user session snapshots and refresh-token digests."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from credential_engine.cache import keys
from credential_engine.cache.client import CacheClient
from credential_engine.core.models import SessionEntry

logger = logging.getLogger(__name__)


class SessionCache:
    """Single-session-per-user cache keyed by user id.

    Writes overwrite the previous snapshot.  All methods raise
    ``CacheUnavailable`` when the cache cannot be reached; interpreting that
    is the caller's job.
    """

    def __init__(self, cache: CacheClient) -> None:
        self._cache = cache

    async def put(self, user_id: str, entry: SessionEntry, ttl_seconds: int) -> None:
        await self._cache.set(keys.user_session(user_id), entry.model_dump_json(), ttl_seconds)
        logger.debug("Session cached for user %s (ttl=%ss)", user_id, ttl_seconds)

    async def get(self, user_id: str) -> SessionEntry | None:
        raw = await self._cache.get(keys.user_session(user_id))
        if raw is None:
            return None
        try:
            return SessionEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable session snapshot for user %s", user_id)
            await self._cache.delete(keys.user_session(user_id))
            return None

    async def delete(self, user_id: str) -> None:
        await self._cache.delete(keys.user_session(user_id))

    # ── Refresh tokens ───────────────────────────────────

    async def put_refresh_digest(self, user_id: str, digest: str, ttl_seconds: int) -> None:
        await self._cache.set(keys.user_refresh(user_id), digest, ttl_seconds)

    async def take_refresh_digest(self, user_id: str) -> str | None:
        """Remove and return the stored digest, so each token redeems once."""
        return await self._cache.getdel(keys.user_refresh(user_id))

    async def delete_all(self, user_id: str) -> None:
        """Drop both the session snapshot and the refresh token."""
        await self._cache.delete(keys.user_session(user_id), keys.user_refresh(user_id))
