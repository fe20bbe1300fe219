"""Fixed-window attempt counters stored in the cache.

A coarse second line of defence: it throttles repeated failures per caller
IP or per ``(subject, purpose)`` pair, across however many distinct codes
are issued.
"""

from __future__ import annotations

import logging

from credential_engine.cache import keys
from credential_engine.cache.client import CacheClient

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts attempts under ``auth:attempts:<scope>``.

    Cache failures propagate as ``CacheUnavailable``; a limiter that cannot
    read its counter must never report "not blocked".
    """

    def __init__(self, cache: CacheClient) -> None:
        self._cache = cache

    async def increment(self, scope_key: str, window_seconds: int) -> int:
        """Count one attempt in the current window and return the new total."""
        count = await self._cache.incr_window(keys.auth_attempts(scope_key), window_seconds)
        logger.debug("Attempt counter %s -> %d", scope_key, count)
        return count

    async def is_blocked(self, scope_key: str, threshold: int) -> bool:
        raw = await self._cache.get(keys.auth_attempts(scope_key))
        blocked = int(raw or 0) >= threshold
        if blocked:
            logger.info("Scope %s is over its attempt threshold (%d)", scope_key, threshold)
        return blocked

    async def reset(self, scope_key: str) -> None:
        await self._cache.delete(keys.auth_attempts(scope_key))
