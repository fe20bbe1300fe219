"""Value objects passed across the engine boundary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from credential_engine.core.errors import ErrorCode
from credential_engine.core.policies import VerificationPurpose
from credential_engine.models.user import User, UserRole


class SessionEntry(BaseModel):
    """Denormalised snapshot of an authenticated user, as held in the cache."""

    user_id: str
    name: str
    phone_number: str = ""
    country: str = ""
    email: str
    is_verified: bool = False
    role: UserRole
    cached_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ttl_seconds: int = 0

    @classmethod
    def from_user(cls, user: User, *, ttl_seconds: int, now: datetime) -> SessionEntry:
        return cls(
            user_id=user.id,
            name=user.name,
            phone_number=user.phone_number,
            country=user.country,
            email=user.email,
            is_verified=user.is_verified,
            role=user.role,
            cached_at=now,
            ttl_seconds=ttl_seconds,
        )

    def is_stale(self, now: datetime) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return now >= self.cached_at + timedelta(seconds=self.ttl_seconds)


@dataclass
class IssueResult:
    """Outcome of ``VerificationEngine.issue``.

    ``warning`` is set when the code was stored but its delivery failed.
    """

    subject: str
    purpose: VerificationPurpose
    code: str | None = None
    expires_at: datetime | None = None
    error: ErrorCode | None = None
    warning: ErrorCode | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class VerificationResult:
    """Outcome of ``VerificationEngine.verify``."""

    valid: bool
    error: ErrorCode | None = None
    attempts_remaining: int | None = None


@dataclass
class SessionLookup:
    """Outcome of ``SessionManager.session_get``.

    ``entry`` is ``None`` only when neither the cache nor the persistence
    layer knows the user.
    """

    entry: SessionEntry | None
    source: Literal["cache", "persistence"] | None = None

    @property
    def hit(self) -> bool:
        return self.source == "cache"


@dataclass
class LoginResult:
    """Outcome of ``SessionManager.login`` / ``rotate_refresh_token``."""

    entry: SessionEntry | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    error: ErrorCode | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
