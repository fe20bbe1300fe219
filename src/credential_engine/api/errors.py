"""Maps every ``ErrorCode`` to one HTTP status and a uniform error body."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from credential_engine.api.schemas import ErrorResponse
from credential_engine.core.errors import CredentialError, ErrorCode

logger = logging.getLogger(__name__)

STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNKNOWN_PURPOSE: 400,
    ErrorCode.INVALID_LENGTH: 500,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EXPIRED: 410,
    ErrorCode.ATTEMPTS_EXCEEDED: 403,
    ErrorCode.INVALID_CODE: 400,
    ErrorCode.ALREADY_CONSUMED: 409,
    ErrorCode.CACHE_UNAVAILABLE: 503,
    ErrorCode.PERSISTENCE_UNAVAILABLE: 503,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.ISSUE_COOLDOWN: 429,
    ErrorCode.REFRESH_TOKEN_INVALID: 401,
    ErrorCode.NOTIFICATION_FAILED: 502,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.INVALID_REQUEST: 422,
}

MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UNKNOWN_PURPOSE: "Unknown verification type.",
    ErrorCode.INVALID_LENGTH: "Verification code could not be generated.",
    ErrorCode.NOT_FOUND: "No pending verification code found.",
    ErrorCode.EXPIRED: "Verification code has expired.",
    ErrorCode.ATTEMPTS_EXCEEDED: "Maximum verification attempts exceeded.",
    ErrorCode.INVALID_CODE: "Invalid verification code.",
    ErrorCode.ALREADY_CONSUMED: "Verification code has already been used.",
    ErrorCode.CACHE_UNAVAILABLE: "Service temporarily unavailable, please retry.",
    ErrorCode.PERSISTENCE_UNAVAILABLE: "Service temporarily unavailable, please retry.",
    ErrorCode.RATE_LIMITED: "Too many attempts. Please try again later.",
    ErrorCode.ISSUE_COOLDOWN: "Please wait before requesting another code.",
    ErrorCode.REFRESH_TOKEN_INVALID: "Session expired, please log in again.",
    ErrorCode.NOTIFICATION_FAILED: "Verification code could not be delivered.",
    ErrorCode.SESSION_NOT_FOUND: "No session for this user.",
    ErrorCode.INVALID_REQUEST: "Request body is malformed or incomplete.",
}


# OpenAPI `responses` entries for every status an error can map to.
ERROR_RESPONSES: dict[int | str, dict] = {
    status: {"model": ErrorResponse} for status in sorted(set(STATUS_BY_CODE.values()))
}


def error_response(code: ErrorCode, *, attempts_remaining: int | None = None) -> JSONResponse:
    body = ErrorResponse(
        error_code=code, message=MESSAGES[code], attempts_remaining=attempts_remaining
    )
    return JSONResponse(
        status_code=STATUS_BY_CODE[code], content=body.model_dump(mode="json")
    )


async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
    if exc.retryable:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations only; the rejected values may contain a code.
    fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
    logger.info("%s %s rejected: invalid %s", request.method, request.url.path, ", ".join(fields))
    return error_response(ErrorCode.INVALID_REQUEST)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CredentialError, credential_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
