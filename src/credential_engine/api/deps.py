"""FastAPI dependencies resolving the per-process service instances."""

from __future__ import annotations

from fastapi import Request

from credential_engine.services.session_manager import SessionManager
from credential_engine.services.verification import VerificationEngine


def get_verification_engine(request: Request) -> VerificationEngine:
    return request.app.state.verification_engine


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def client_ip(request: Request) -> str | None:
    """Caller IP, honouring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None
