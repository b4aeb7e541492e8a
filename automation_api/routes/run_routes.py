from __future__ import annotations

"""Test and live run routes for an open editing session."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from automation_api.deps import get_open_session
from automation_api.schemas import (
    ConfirmRunRequest,
    ExecutionListResponse,
    LiveRunRequest,
    LiveRunResponse,
    RunTestRequest,
)
from automation_engine.dispatcher import ExecutionBlocked, PendingConfirmation
from automation_engine.executions import ExecutionRecord
from automation_engine.session import EditorSession

logger = logging.getLogger("automation.routes.run")

router = APIRouter(prefix="/automations/{automation_id}/session", tags=["run"])


def _blocked(exc: ExecutionBlocked) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post(
    "/test",
    response_model=ExecutionRecord,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_test(
    payload: RunTestRequest,
    session: EditorSession = Depends(get_open_session),
) -> ExecutionRecord:
    """Start a test run; it never changes the automation status."""

    try:
        return await session.trigger_test(payload.trigger_data, wait=not payload.background)
    except ExecutionBlocked as exc:
        raise _blocked(exc) from exc


@router.post(
    "/run",
    response_model=LiveRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_live(
    payload: LiveRunRequest,
    session: EditorSession = Depends(get_open_session),
) -> LiveRunResponse:
    """Start a live run of a manual automation, or return a confirmation token."""

    try:
        result = await session.trigger_live(payload.trigger_data, wait=not payload.background)
    except ExecutionBlocked as exc:
        raise _blocked(exc) from exc
    if isinstance(result, PendingConfirmation):
        return LiveRunResponse(pending=True, confirmation=result)
    return LiveRunResponse(pending=False, execution=result)


@router.post(
    "/run/confirm",
    response_model=LiveRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def confirm_live(
    payload: ConfirmRunRequest,
    session: EditorSession = Depends(get_open_session),
) -> LiveRunResponse:
    """Run a live execution the user has confirmed."""

    try:
        record = await session.confirm_live(payload.token, wait=not payload.background)
    except ExecutionBlocked as exc:
        raise _blocked(exc) from exc
    logger.info("Confirmed live run %s", record.id)
    return LiveRunResponse(pending=False, execution=record)


@router.get("/executions", response_model=ExecutionListResponse)
async def list_executions(session: EditorSession = Depends(get_open_session)) -> ExecutionListResponse:
    """Runs of this automation, most recent first."""

    return ExecutionListResponse(
        executions=session.executions.records(),
        running=session.dispatcher.running,
    )
