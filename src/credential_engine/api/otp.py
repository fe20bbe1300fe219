"""OTP endpoints.

Endpoints
---------
POST /otp/request   → issue a code and email it
POST /otp/verify    → check a submitted code
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from credential_engine.api.deps import client_ip, get_verification_engine
from credential_engine.api.errors import ERROR_RESPONSES, error_response
from credential_engine.api.schemas import (
    OTPRequest,
    OTPRequestResponse,
    OTPVerifyRequest,
    OTPVerifyResponse,
)
from credential_engine.services.verification import VerificationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/request", response_model=OTPRequestResponse, responses=ERROR_RESPONSES)
async def request_otp(
    body: OTPRequest,
    engine: VerificationEngine = Depends(get_verification_engine),
):
    """Issue a code for ``body.type`` and send it to ``body.email``."""
    result = await engine.issue(body.email, body.type)
    if not result.ok:
        return error_response(result.error)
    return OTPRequestResponse(
        message="OTP sent successfully.",
        expires_at=result.expires_at,
        warning=result.warning,
    )


@router.post("/verify", response_model=OTPVerifyResponse, responses=ERROR_RESPONSES)
async def verify_otp(
    body: OTPVerifyRequest,
    request: Request,
    engine: VerificationEngine = Depends(get_verification_engine),
):
    """Validate a code for the given email and type."""
    result = await engine.verify(body.email, body.type, body.otp, client_ip=client_ip(request))
    if not result.valid:
        return error_response(result.error, attempts_remaining=result.attempts_remaining)
    return OTPVerifyResponse(valid=True)
