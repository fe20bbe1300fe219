"""Request / response models for the HTTP surface."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from credential_engine.core.errors import ErrorCode
from credential_engine.core.models import SessionEntry
from credential_engine.models.user import UserRole


class ErrorResponse(BaseModel):
    error_code: ErrorCode
    message: str
    attempts_remaining: int | None = None


# ── OTP ──────────────────────────────────────────────────

class OTPRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=256)
    type: str


class OTPRequestResponse(BaseModel):
    message: str
    expires_at: datetime
    warning: ErrorCode | None = None


class OTPVerifyRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=256)
    otp: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")
    type: str


class OTPVerifyResponse(BaseModel):
    valid: bool


# ── Sessions ─────────────────────────────────────────────

class SessionPutRequest(BaseModel):
    name: str
    phone_number: str = ""
    country: str = ""
    email: str
    is_verified: bool = False
    role: UserRole
    ttl_seconds: int | None = Field(default=None, gt=0)


class SessionResponse(BaseModel):
    session: SessionEntry
    source: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RefreshResponse(BaseModel):
    session: SessionEntry
    refresh_token: str
    expires_in: int
