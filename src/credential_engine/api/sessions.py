"""Session snapshot endpoints, consumed by the authorisation middleware."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from credential_engine.api.deps import get_session_manager
from credential_engine.api.errors import ERROR_RESPONSES, error_response
from credential_engine.api.schemas import (
    RefreshRequest,
    RefreshResponse,
    SessionPutRequest,
    SessionResponse,
)
from credential_engine.core.errors import ErrorCode
from credential_engine.core.models import SessionEntry
from credential_engine.services.session_manager import SessionManager

router = APIRouter(prefix="/sessions", tags=["sessions"], responses=ERROR_RESPONSES)


@router.get("/{user_id}", response_model=SessionResponse)
async def get_session(user_id: str, manager: SessionManager = Depends(get_session_manager)):
    lookup = await manager.session_get(user_id)
    if lookup.entry is None:
        return error_response(ErrorCode.SESSION_NOT_FOUND)
    return SessionResponse(session=lookup.entry, source=lookup.source)


@router.put("/{user_id}", response_model=SessionResponse)
async def put_session(
    user_id: str,
    body: SessionPutRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    entry = SessionEntry(user_id=user_id, **body.model_dump(exclude={"ttl_seconds"}))
    stored = await manager.session_put(user_id, entry, body.ttl_seconds)
    return SessionResponse(session=stored, source="cache")


@router.delete("/{user_id}", status_code=204)
async def delete_session(user_id: str, manager: SessionManager = Depends(get_session_manager)):
    await manager.session_delete(user_id)
    return Response(status_code=204)


@router.post("/{user_id}/refresh", response_model=RefreshResponse)
async def refresh_session(
    user_id: str,
    body: RefreshRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    result = await manager.rotate_refresh_token(user_id, body.refresh_token)
    if not result.ok:
        return error_response(result.error)
    return RefreshResponse(
        session=result.entry, refresh_token=result.refresh_token, expires_in=result.expires_in
    )
