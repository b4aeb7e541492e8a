from __future__ import annotations

"""Automation record routes (create, read, delete)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from automation_api.deps import get_sessions, get_store
from automation_api.schemas import AutomationCreateRequest
from automation_engine.collaborators import AutomationNotFound
from automation_engine.models import Automation

logger = logging.getLogger("automation.routes.automations")

router = APIRouter(prefix="/automations", tags=["automations"])


@router.post(
    "",
    response_model=Automation,
    status_code=status.HTTP_201_CREATED,
)
async def create_automation(
    payload: AutomationCreateRequest,
    store=Depends(get_store),
) -> Automation:
    """Create a draft automation holding a single trigger node."""

    automation = await store.create_automation(payload)
    logger.info("Created automation %s", automation.id)
    return automation


@router.get(
    "/{automation_id}",
    response_model=Automation,
    status_code=status.HTTP_200_OK,
)
async def get_automation(automation_id: str, store=Depends(get_store)) -> Automation:
    """Return the persisted automation."""

    try:
        return await store.get_automation(automation_id)
    except AutomationNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete(
    "/{automation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_automation(
    automation_id: str,
    store=Depends(get_store),
    sessions=Depends(get_sessions),
) -> Response:
    """Delete an automation, tearing down its editing session first."""

    sessions.close(automation_id, reason="deleted")
    try:
        await store.delete_automation(automation_id)
    except AutomationNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("Deleted automation %s", automation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
