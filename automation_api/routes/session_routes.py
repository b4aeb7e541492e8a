from __future__ import annotations

"""Editing-session routes: open/close, mutations, undo/redo, save, status."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from automation_api.deps import get_open_session, get_sessions
from automation_api.schemas import (
    HistoryResponse,
    MetadataRequest,
    MutationRequest,
    MutationResponse,
    SaveResponse,
    SessionResponse,
    StatusRequest,
    StatusResponse,
    serialize_history,
    serialize_mutation,
    serialize_session,
)
from automation_engine.autosave import SaveError
from automation_engine.collaborators import AutomationNotFound
from automation_engine.session import EditorSession
from automation_engine.status import PublishBlocked, StatusPersistError

logger = logging.getLogger("automation.routes.session")

router = APIRouter(prefix="/automations/{automation_id}/session", tags=["session"])


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
)
async def open_session(
    automation_id: str,
    sessions=Depends(get_sessions),
) -> SessionResponse:
    """Open (or return) the editing session for an automation."""

    try:
        session = await sessions.open(automation_id)
    except AutomationNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return serialize_session(session)


@router.get(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
)
async def read_session(session: EditorSession = Depends(get_open_session)) -> SessionResponse:
    """Return the current state of the editing session."""

    return serialize_session(session)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def close_session(
    automation_id: str,
    sessions=Depends(get_sessions),
) -> None:
    """Close the editing session; pending autosave timers are cancelled."""

    if not sessions.close(automation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not open.")


@router.post(
    "/mutations",
    response_model=MutationResponse,
    status_code=status.HTTP_200_OK,
)
async def apply_mutation(
    payload: MutationRequest,
    session: EditorSession = Depends(get_open_session),
) -> MutationResponse:
    """Apply one graph mutation. Invalid references are reported, not raised."""

    result = session.apply(payload.mutation)
    return serialize_mutation(session, result.applied, result.error)


@router.post("/undo", response_model=HistoryResponse)
async def undo(session: EditorSession = Depends(get_open_session)) -> HistoryResponse:
    """Undo the most recent graph change, if any."""

    return serialize_history(session, session.undo() is not None)


@router.post("/redo", response_model=HistoryResponse)
async def redo(session: EditorSession = Depends(get_open_session)) -> HistoryResponse:
    """Redo the most recently undone change, if any."""

    return serialize_history(session, session.redo() is not None)


@router.post("/save", response_model=SaveResponse)
async def save(session: EditorSession = Depends(get_open_session)) -> SaveResponse:
    """Save immediately, after any save already in flight."""

    try:
        saved_at = await session.save()
    except SaveError as exc:
        logger.warning("Manual save failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return SaveResponse(saved_at=saved_at, save_state=session.save_state)


@router.patch("/metadata", response_model=SessionResponse)
async def update_metadata(
    payload: MetadataRequest,
    session: EditorSession = Depends(get_open_session),
) -> SessionResponse:
    """Edit name, description or trigger configuration."""

    try:
        session.update_metadata(**payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return serialize_session(session)


@router.post("/status", response_model=StatusResponse)
async def change_status(
    payload: StatusRequest,
    session: EditorSession = Depends(get_open_session),
) -> StatusResponse:
    """Request a status transition (draft, active or paused)."""

    try:
        await session.set_status(payload.status)
    except PublishBlocked as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Activation blocked", "reasons": exc.reasons},
        ) from exc
    except StatusPersistError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return StatusResponse(status=session.status.status, enabled=session.status.enabled)
