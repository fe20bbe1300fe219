"""Verification purposes and the code policy each one carries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from credential_engine.core.errors import UnknownPurpose

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 10


@dataclass(frozen=True)
class Policy:
    """Length, expiry window and attempt cap for one verification purpose."""

    code_length: int
    expiry_minutes: int
    max_attempts: int

    def __post_init__(self) -> None:
        if not MIN_CODE_LENGTH <= self.code_length <= MAX_CODE_LENGTH:
            raise ValueError(f"code_length must be in [4, 10], got {self.code_length}")
        if self.expiry_minutes <= 0:
            raise ValueError("expiry_minutes must be positive")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

    @property
    def expiry_seconds(self) -> int:
        return self.expiry_minutes * 60


class VerificationPurpose(str, Enum):
    """Why a code was issued.  Each member carries its own ``Policy``."""

    policy: Policy

    def __new__(cls, value: str, policy: Policy) -> VerificationPurpose:
        member = str.__new__(cls, value)
        member._value_ = value
        member.policy = policy
        return member

    PASSWORD_RESET = ("PASSWORD_RESET", Policy(code_length=6, expiry_minutes=10, max_attempts=5))
    EMAIL_VERIFICATION = ("EMAIL_VERIFICATION", Policy(code_length=6, expiry_minutes=15, max_attempts=3))
    TWO_FACTOR_AUTH = ("TWO_FACTOR_AUTH", Policy(code_length=6, expiry_minutes=5, max_attempts=3))
    ACCOUNT_VERIFICATION = ("ACCOUNT_VERIFICATION", Policy(code_length=8, expiry_minutes=30, max_attempts=5))


def resolve_purpose(purpose: VerificationPurpose | str) -> VerificationPurpose:
    """Coerce a purpose name to its enum member, or raise ``UnknownPurpose``."""
    if isinstance(purpose, VerificationPurpose):
        return purpose
    try:
        return VerificationPurpose(purpose)
    except ValueError:
        logger.error("Unknown verification purpose requested: %r", purpose)
        raise UnknownPurpose(f"Unknown verification purpose: {purpose!r}") from None


def policy_for(purpose: VerificationPurpose | str) -> Policy:
    """Return the policy governing *purpose*."""
    return resolve_purpose(purpose).policy
