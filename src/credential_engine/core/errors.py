"""Error taxonomy shared by the OTP engine, the session layer and the API.

Expected user-facing outcomes (wrong code, expired code, …) travel as
``ErrorCode`` values inside result objects.  Configuration bugs and
infrastructure failures are raised as ``CredentialError`` subclasses, each
carrying its stable ``ErrorCode`` so the HTTP layer can map it without
matching on message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable, enumerable error codes exposed to API clients."""

    UNKNOWN_PURPOSE = "UNKNOWN_PURPOSE"
    INVALID_LENGTH = "INVALID_LENGTH"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    ATTEMPTS_EXCEEDED = "ATTEMPTS_EXCEEDED"
    INVALID_CODE = "INVALID_CODE"
    ALREADY_CONSUMED = "ALREADY_CONSUMED"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    PERSISTENCE_UNAVAILABLE = "PERSISTENCE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    ISSUE_COOLDOWN = "ISSUE_COOLDOWN"
    REFRESH_TOKEN_INVALID = "REFRESH_TOKEN_INVALID"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"


class CredentialError(Exception):
    """Base class for errors raised across the engine boundary."""

    code: ErrorCode
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code.value)
        self.message = message or self.code.value


# ── Configuration bugs ───────────────────────────────────

class UnknownPurpose(CredentialError):
    code = ErrorCode.UNKNOWN_PURPOSE


class InvalidLength(CredentialError):
    code = ErrorCode.INVALID_LENGTH


# ── Transient infrastructure failures ────────────────────

class CacheUnavailable(CredentialError):
    code = ErrorCode.CACHE_UNAVAILABLE
    retryable = True


class PersistenceUnavailable(CredentialError):
    code = ErrorCode.PERSISTENCE_UNAVAILABLE
    retryable = True
