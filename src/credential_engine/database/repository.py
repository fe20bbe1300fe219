"""Repositories — data access for users and issued one-time codes.

Every state change on an ``OtpRecord`` is a single conditional ``UPDATE``
keyed by the record id and its expected status, so concurrent verifiers can
never both observe ``attempts_used = k`` and write ``k + 1``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credential_engine.core.policies import VerificationPurpose
from credential_engine.models.otp import OtpRecord, OtpStatus
from credential_engine.models.user import User

_NO_SYNC = {"synchronize_session": False}


class UserRepository:
    """Encapsulates all database queries related to users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email, User.is_active.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class OtpRepository:
    """Queries and atomic transitions for ``OtpRecord`` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Reads ────────────────────────────────────────────

    async def latest(
        self, subject: str, purpose: VerificationPurpose
    ) -> OtpRecord | None:
        """Most recent record for the pair that has not been replaced."""
        stmt = (
            select(OtpRecord)
            .where(
                OtpRecord.subject == subject,
                OtpRecord.purpose == purpose,
                OtpRecord.status != OtpStatus.SUPERSEDED,
            )
            .order_by(OtpRecord.issued_at.desc(), OtpRecord.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def reload(self, record_id: int) -> OtpRecord | None:
        return await self._session.get(OtpRecord, record_id, populate_existing=True)

    async def issued_since(
        self, subject: str, purpose: VerificationPurpose, since: datetime
    ) -> bool:
        """Whether any code was issued for the pair at or after *since*."""
        stmt = (
            select(OtpRecord.id)
            .where(
                OtpRecord.subject == subject,
                OtpRecord.purpose == purpose,
                OtpRecord.issued_at >= since,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    # ── Writes ───────────────────────────────────────────

    async def replace_active(self, record: OtpRecord) -> OtpRecord:
        """Supersede any pending code for the pair and insert *record*."""
        stmt = (
            update(OtpRecord)
            .where(
                OtpRecord.subject == record.subject,
                OtpRecord.purpose == record.purpose,
                OtpRecord.consumed.is_(False),
            )
            .values(status=OtpStatus.SUPERSEDED, consumed=True)
            .execution_options(**_NO_SYNC)
        )
        await self._session.execute(stmt)
        self._session.add(record)
        await self._session.flush()
        return record

    async def register_failed_attempt(
        self, record_id: int, max_attempts: int, now: datetime
    ) -> int | None:
        """Atomically count one wrong guess; lock the record at the cap.

        Returns the new ``attempts_used``, or ``None`` when the record was no
        longer pending (another caller got there first).
        """
        reaches_cap = OtpRecord.attempts_used + 1 >= max_attempts
        stmt = (
            update(OtpRecord)
            .where(
                OtpRecord.id == record_id,
                OtpRecord.status == OtpStatus.PENDING,
                OtpRecord.attempts_used < max_attempts,
            )
            .values(
                attempts_used=OtpRecord.attempts_used + 1,
                last_attempt_at=now,
                consumed=reaches_cap,
                status=_case_status(reaches_cap, OtpStatus.LOCKED),
            )
            .returning(OtpRecord.attempts_used)
            .execution_options(**_NO_SYNC)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_expired(self, record_id: int, now: datetime) -> bool:
        """Flip a pending record to ``EXPIRED``, counting the attempt."""
        stmt = (
            update(OtpRecord)
            .where(OtpRecord.id == record_id, OtpRecord.status == OtpStatus.PENDING)
            .values(
                status=OtpStatus.EXPIRED,
                consumed=True,
                attempts_used=OtpRecord.attempts_used + 1,
                last_attempt_at=now,
            )
            .execution_options(**_NO_SYNC)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_locked(self, record_id: int) -> bool:
        stmt = (
            update(OtpRecord)
            .where(OtpRecord.id == record_id, OtpRecord.status == OtpStatus.PENDING)
            .values(status=OtpStatus.LOCKED, consumed=True)
            .execution_options(**_NO_SYNC)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def consume(self, record_id: int, max_attempts: int, now: datetime) -> bool:
        """Mark a pending, non-exhausted record as verified."""
        stmt = (
            update(OtpRecord)
            .where(
                OtpRecord.id == record_id,
                OtpRecord.status == OtpStatus.PENDING,
                OtpRecord.attempts_used < max_attempts,
                OtpRecord.expires_at >= now,
            )
            .values(
                status=OtpStatus.VERIFIED,
                consumed=True,
                verified_at=now,
                last_attempt_at=now,
            )
            .execution_options(**_NO_SYNC)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def expire_stale(self, now: datetime) -> int:
        """Retire every pending record whose window has closed."""
        stmt = (
            update(OtpRecord)
            .where(OtpRecord.status == OtpStatus.PENDING, OtpRecord.expires_at < now)
            .values(status=OtpStatus.EXPIRED, consumed=True)
            .execution_options(**_NO_SYNC)
        )
        result = await self._session.execute(stmt)
        return result.rowcount


def _case_status(condition, status: OtpStatus):
    """``CASE WHEN condition THEN status ELSE <current status> END``."""
    status_type = OtpRecord.__table__.c.status.type
    return case((condition, literal(status, status_type)), else_=OtpRecord.status)
