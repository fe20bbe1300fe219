"""Verification engine — issues and checks one-time codes.

Flow
----
``issue``
    policy lookup → resend cooldown → code generation → store (replacing any
    pending code for the same subject and purpose) → email dispatch.
``verify``
    coarse rate-limit check → load the latest record → expiry / attempt-cap
    checks → constant-time comparison → atomic attempt count or consume.

Per-record state machine::

    PENDING ──(correct code)──────────▶ VERIFIED
       │  ╰─(wrong code, below cap)─╮
       │◀───────────────────────────╯
       ├──(wrong code reaches cap)────▶ LOCKED
       ├──(checked after expires_at)──▶ EXPIRED
       ╰──(new code issued)───────────▶ SUPERSEDED
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credential_engine.cache import keys
from credential_engine.cache.client import CacheClient
from credential_engine.cache.rate_limiter import RateLimiter
from credential_engine.config import settings
from credential_engine.core.errors import (
    CacheUnavailable,
    ErrorCode,
    InvalidLength,
    PersistenceUnavailable,
)
from credential_engine.core.generator import generate_code
from credential_engine.core.models import IssueResult, VerificationResult
from credential_engine.core.policies import Policy, VerificationPurpose, resolve_purpose
from credential_engine.database.repository import OtpRepository
from credential_engine.models.otp import OtpRecord, OtpStatus
from credential_engine.services.email_service import CodeDispatcher

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_TERMINAL_ERRORS = {
    OtpStatus.VERIFIED: ErrorCode.ALREADY_CONSUMED,
    OtpStatus.EXPIRED: ErrorCode.EXPIRED,
    OtpStatus.LOCKED: ErrorCode.ATTEMPTS_EXCEEDED,
}


def utcnow() -> datetime:
    return datetime.now(UTC)


class VerificationEngine:
    """Issues and verifies codes for every ``VerificationPurpose``.

    Holds no mutable state of its own: records live in the persistence layer
    and throttling counters in the cache, so any number of instances may
    serve the same users.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheClient,
        rate_limiter: RateLimiter,
        dispatcher: CodeDispatcher,
        *,
        clock: Clock = utcnow,
        resend_cooldown_seconds: int | None = None,
        verify_window_seconds: int | None = None,
        verify_threshold: int | None = None,
        notification_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._limiter = rate_limiter
        self._dispatcher = dispatcher
        self._clock = clock
        self._cooldown = _pick(resend_cooldown_seconds, settings.otp_resend_cooldown_seconds)
        self._verify_window = _pick(verify_window_seconds, settings.otp_verify_window_seconds)
        self._verify_threshold = _pick(verify_threshold, settings.otp_verify_threshold)
        self._notification_timeout = _pick(
            notification_timeout, settings.notification_timeout_seconds
        )

    # ── Issue ────────────────────────────────────────────

    async def issue(
        self,
        subject: str,
        purpose: VerificationPurpose | str,
        *,
        destination: str | None = None,
    ) -> IssueResult:
        """Generate, store and dispatch a fresh code for *subject*.

        Any pending code for the same pair stops being verifiable.  A failed
        delivery is reported through ``IssueResult.warning``; the code stays
        valid.
        """
        purpose = resolve_purpose(purpose)
        policy = purpose.policy
        now = self._clock()

        if await self._in_cooldown(subject, purpose, now):
            logger.info("Issue refused for %s/%s: resend cooldown", subject, purpose.value)
            return IssueResult(subject=subject, purpose=purpose, error=ErrorCode.ISSUE_COOLDOWN)

        try:
            code = generate_code(policy.code_length)
        except InvalidLength:
            logger.error("Policy for %s has an unusable code length", purpose.value)
            raise

        expires_at = now + timedelta(minutes=policy.expiry_minutes)
        await self._store(subject, purpose, code, now, expires_at)
        logger.info("Code issued for %s/%s (expires %s)", subject, purpose.value, expires_at)

        await self._start_cooldown(subject, purpose)
        delivered = await self._dispatch(destination or subject, code, purpose)

        return IssueResult(
            subject=subject,
            purpose=purpose,
            code=code,
            expires_at=expires_at,
            warning=None if delivered else ErrorCode.NOTIFICATION_FAILED,
        )

    # ── Verify ───────────────────────────────────────────

    async def verify(
        self,
        subject: str,
        purpose: VerificationPurpose | str,
        submitted_code: str,
        *,
        client_ip: str | None = None,
    ) -> VerificationResult:
        """Check *submitted_code* against the latest code for the pair.

        Raises ``CacheUnavailable`` when the throttling counters cannot be
        read or written; that is never reported as a successful check.
        """
        purpose = resolve_purpose(purpose)
        policy = purpose.policy
        scopes = [keys.otp_scope(subject, purpose.value)]
        if client_ip:
            scopes.append(keys.ip_scope(client_ip))

        for scope in scopes:
            if await self._limiter.is_blocked(scope, self._verify_threshold):
                logger.info("Verify throttled for %s/%s (%s)", subject, purpose.value, scope)
                return VerificationResult(valid=False, error=ErrorCode.RATE_LIMITED)

        now = self._clock()
        async with self._transaction() as repo:
            result, counted = await self._check(repo, subject, purpose, policy, submitted_code, now)

        if counted:
            for scope in scopes:
                await self._limiter.increment(scope, self._verify_window)

        if result.valid:
            logger.info("Code verified for %s/%s", subject, purpose.value)
        else:
            logger.info(
                "Verification failed for %s/%s: %s", subject, purpose.value, result.error.value
            )
        return result

    async def expire_stale(self) -> int:
        """Mark every pending code past its expiry as ``EXPIRED``."""
        async with self._transaction() as repo:
            count = await repo.expire_stale(self._clock())
        if count:
            logger.info("Expired %d stale codes", count)
        return count

    # ── Private helpers ──────────────────────────────────

    async def _check(
        self,
        repo: OtpRepository,
        subject: str,
        purpose: VerificationPurpose,
        policy: Policy,
        submitted_code: str,
        now: datetime,
    ) -> tuple[VerificationResult, bool]:
        """Run the record checks; the flag says whether the failure counts
        against the coarse rate limiter."""
        record = await repo.latest(subject, purpose)
        if record is None:
            return _failure(ErrorCode.NOT_FOUND), False

        # Expiry outranks a lockout; neither is counted again.
        if record.status == OtpStatus.LOCKED and now > record.expires_at:
            return _failure(ErrorCode.EXPIRED), False

        if record.status in _TERMINAL_ERRORS:
            error = _TERMINAL_ERRORS[record.status]
            return _failure(error), error == ErrorCode.ALREADY_CONSUMED

        if now > record.expires_at:
            if await repo.mark_expired(record.id, now):
                return _failure(ErrorCode.EXPIRED), True
            return await self._settled(repo, record.id), False

        if record.attempts_used >= policy.max_attempts:
            await repo.mark_locked(record.id)
            return _failure(ErrorCode.ATTEMPTS_EXCEEDED), False

        if not hmac.compare_digest(record.code.encode(), submitted_code.encode()):
            used = await repo.register_failed_attempt(record.id, policy.max_attempts, now)
            if used is None:
                return await self._settled(repo, record.id), False
            remaining = max(policy.max_attempts - used, 0)
            return _failure(ErrorCode.INVALID_CODE, attempts_remaining=remaining), True

        if not await repo.consume(record.id, policy.max_attempts, now):
            return await self._settled(repo, record.id), False
        return VerificationResult(valid=True), False

    async def _settled(self, repo: OtpRepository, record_id: int) -> VerificationResult:
        """Report the state a concurrent caller left the record in."""
        record = await repo.reload(record_id)
        if record is None or record.status == OtpStatus.SUPERSEDED:
            return _failure(ErrorCode.NOT_FOUND)
        return _failure(_TERMINAL_ERRORS.get(record.status, ErrorCode.EXPIRED))

    async def _store(
        self,
        subject: str,
        purpose: VerificationPurpose,
        code: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> None:
        # A concurrent issue for the same pair trips the partial unique
        # index; one retry supersedes the winner's record.
        for attempt in (1, 2):
            record = OtpRecord(
                subject=subject,
                purpose=purpose,
                code=code,
                issued_at=issued_at,
                expires_at=expires_at,
                attempts_used=0,
                consumed=False,
                status=OtpStatus.PENDING,
            )
            try:
                async with self._transaction() as repo:
                    await repo.replace_active(record)
                return
            except IntegrityError as exc:
                if attempt == 2:
                    logger.error("Could not store code for %s/%s: %s", subject, purpose.value, exc)
                    raise PersistenceUnavailable("Concurrent issue conflict") from exc
                logger.info("Concurrent issue for %s/%s, retrying", subject, purpose.value)

    async def _in_cooldown(
        self, subject: str, purpose: VerificationPurpose, now: datetime
    ) -> bool:
        if self._cooldown <= 0:
            return False
        try:
            return await self._cache.exists(keys.otp_cooldown(subject, purpose.value))
        except CacheUnavailable:
            logger.warning("Cooldown check for %s falling back to the database", subject)
        since = now - timedelta(seconds=self._cooldown)
        async with self._transaction() as repo:
            return await repo.issued_since(subject, purpose, since)

    async def _start_cooldown(self, subject: str, purpose: VerificationPurpose) -> None:
        if self._cooldown <= 0:
            return
        try:
            await self._cache.set(
                keys.otp_cooldown(subject, purpose.value), "1", self._cooldown
            )
        except CacheUnavailable:
            logger.warning("Could not record resend cooldown for %s", subject)

    async def _dispatch(
        self, destination: str, code: str, purpose: VerificationPurpose
    ) -> bool:
        try:
            delivered = await asyncio.wait_for(
                self._dispatcher.send_code(destination, code, purpose),
                timeout=self._notification_timeout,
            )
        except TimeoutError:
            logger.warning("Code delivery to %s timed out", destination)
            return False
        except Exception:
            logger.exception("Code dispatcher failed for %s", destination)
            return False
        if not delivered:
            logger.warning("Code delivery to %s was rejected", destination)
        return bool(delivered)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[OtpRepository]:
        """One committed unit of work; connection failures become
        ``PersistenceUnavailable``."""
        try:
            async with self._session_factory() as session, session.begin():
                yield OtpRepository(session)
        except OperationalError as exc:
            logger.error("Persistence layer unavailable: %s", exc)
            raise PersistenceUnavailable("Persistence layer unavailable") from exc


def _failure(error: ErrorCode, attempts_remaining: int | None = None) -> VerificationResult:
    return VerificationResult(valid=False, error=error, attempts_remaining=attempts_remaining)


def _pick(value, default):
    return default if value is None else value
