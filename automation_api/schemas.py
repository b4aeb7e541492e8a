from __future__ import annotations

"""Request and response schemas for the automation editor API."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from automation_engine.autosave import SaveState
from automation_engine.dispatcher import PendingConfirmation
from automation_engine.executions import ExecutionRecord
from automation_engine.graph import Mutation
from automation_engine.models import Automation, AutomationDraft, AutomationStatus, Graph
from automation_engine.session import EditorSession
from automation_engine.validation import ValidationResult


# Automation Schemas -----------------------------------------------------------


class AutomationCreateRequest(AutomationDraft):
    """Payload for POST /automations; trigger_config is checked against trigger_type."""

    name: str = Field(min_length=1)


# Session Schemas --------------------------------------------------------------


class SessionResponse(BaseModel):
    """Everything the editor renders for an open automation."""

    automation: Automation
    save_state: SaveState
    save_indicator: str
    can_undo: bool
    can_redo: bool
    running: bool
    validation: ValidationResult


class MutationRequest(BaseModel):
    """Payload for POST .../session/mutations."""

    mutation: Mutation


class MutationResponse(BaseModel):
    applied: bool
    error: str | None = None
    graph: Graph
    can_undo: bool
    can_redo: bool
    save_state: SaveState


class HistoryResponse(BaseModel):
    """Response for undo/redo; ``changed`` is false when there was nothing to do."""

    changed: bool
    graph: Graph
    can_undo: bool
    can_redo: bool
    save_state: SaveState


class SaveResponse(BaseModel):
    saved_at: datetime
    save_state: SaveState


class MetadataRequest(BaseModel):
    """Payload for PATCH .../session/metadata."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None

    @field_validator("name", "trigger_config")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class StatusRequest(BaseModel):
    status: Literal["draft", "active", "paused"]


class StatusResponse(BaseModel):
    status: AutomationStatus
    enabled: bool


# Run Schemas ------------------------------------------------------------------


class RunTestRequest(BaseModel):
    """Payload for POST .../session/test."""

    trigger_data: Optional[Dict[str, Any]] = None
    background: bool = False


class LiveRunRequest(BaseModel):
    """Payload for POST .../session/run."""

    trigger_data: Optional[Dict[str, Any]] = None
    background: bool = False


class ConfirmRunRequest(BaseModel):
    token: str
    background: bool = False


class LiveRunResponse(BaseModel):
    """Either a started execution or a confirmation to ask the user for."""

    pending: bool
    confirmation: Optional[PendingConfirmation] = None
    execution: Optional[ExecutionRecord] = None


class ExecutionListResponse(BaseModel):
    executions: List[ExecutionRecord]
    running: bool


def serialize_session(session: EditorSession) -> SessionResponse:
    """Convert an open EditorSession to its API schema."""

    state = session.save_state
    return SessionResponse(
        automation=session.automation_snapshot(),
        save_state=state,
        save_indicator=state.indicator(),
        can_undo=session.can_undo(),
        can_redo=session.can_redo(),
        running=session.dispatcher.running,
        validation=session.validate(),
    )


def serialize_mutation(session: EditorSession, applied: bool, error: str | None) -> MutationResponse:
    return MutationResponse(
        applied=applied,
        error=error,
        graph=session.current_graph(),
        can_undo=session.can_undo(),
        can_redo=session.can_redo(),
        save_state=session.save_state,
    )


def serialize_history(session: EditorSession, changed: bool) -> HistoryResponse:
    return HistoryResponse(
        changed=changed,
        graph=session.current_graph(),
        can_undo=session.can_undo(),
        can_redo=session.can_redo(),
        save_state=session.save_state,
    )


__all__ = [
    "AutomationCreateRequest",
    "ConfirmRunRequest",
    "ExecutionListResponse",
    "HistoryResponse",
    "LiveRunRequest",
    "LiveRunResponse",
    "MetadataRequest",
    "MutationRequest",
    "MutationResponse",
    "SaveResponse",
    "SessionResponse",
    "StatusRequest",
    "StatusResponse",
    "RunTestRequest",
    "serialize_history",
    "serialize_mutation",
    "serialize_session",
]
