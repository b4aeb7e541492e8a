from __future__ import annotations

"""Execution requests, records and the session's execution history view."""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from automation_engine.models import utcnow

ExecutionOutcome = Literal["running", "success", "failure"]
NodeRunStatus = Literal["success", "error", "skipped"]


class ExecutionRequest(BaseModel):
    """What the dispatcher hands to the execution collaborator."""

    automation_id: str
    test_mode: bool = False
    trigger_data: Optional[Dict[str, Any]] = None
    execution_id: str = Field(default_factory=lambda: str(uuid4()))


class NodeRun(BaseModel):
    """Per-node trace entry reported by the execution collaborator."""

    node_id: str
    node_type: str
    status: NodeRunStatus
    output: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class ExecutionReport(BaseModel):
    """Completion report returned by the execution collaborator."""

    execution_id: str
    success: bool
    error: Optional[str] = None
    error_node_id: Optional[str] = None
    nodes_executed: List[NodeRun] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[float] = None


class ExecutionRecord(BaseModel):
    """One run as shown in the execution panel. Updated in place on completion."""

    id: str
    automation_id: str
    test_mode: bool
    outcome: ExecutionOutcome = "running"
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    trigger_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_node_id: Optional[str] = None
    nodes_executed: List[NodeRun] = Field(default_factory=list)
    duration_ms: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.outcome != "running"


class ExecutionHistory:
    """Most-recent-first list of runs for one editing session.

    Records are only ever prepended; a running record transitions to
    ``success`` or ``failure`` in place.
    """

    def __init__(self) -> None:
        self._records: List[ExecutionRecord] = []
        self._listeners: List[Callable[[ExecutionRecord], None]] = []

    def subscribe(self, listener: Callable[[ExecutionRecord], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, record: ExecutionRecord) -> None:
        for listener in list(self._listeners):
            listener(record)

    def seed(self, records: Iterable[ExecutionRecord]) -> None:
        """Append stored history behind anything recorded in this session."""

        known = {record.id for record in self._records}
        stored = sorted(
            (record for record in records if record.id not in known),
            key=lambda record: record.started_at,
            reverse=True,
        )
        self._records.extend(stored)

    def prepend(self, record: ExecutionRecord) -> ExecutionRecord:
        self._records.insert(0, record)
        self._notify(record)
        return record

    def get(self, record_id: str) -> ExecutionRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise KeyError(f"Execution '{record_id}' not found.")

    def complete(
        self,
        record_id: str,
        outcome: ExecutionOutcome,
        *,
        report: ExecutionReport | None = None,
        error: str | None = None,
        finished_at: datetime | None = None,
    ) -> ExecutionRecord:
        """Move a running record to its final outcome."""

        record = self.get(record_id)
        if record.finished:
            raise ValueError(f"Execution '{record_id}' already finished as {record.outcome}.")
        record.outcome = outcome
        record.finished_at = finished_at or utcnow()
        if report is not None:
            record.nodes_executed = list(report.nodes_executed)
            record.error = report.error
            record.error_node_id = report.error_node_id
            record.duration_ms = report.duration_ms
        if error is not None:
            record.error = error
        if record.duration_ms is None:
            record.duration_ms = (record.finished_at - record.started_at).total_seconds() * 1000
        self._notify(record)
        return record

    def records(self) -> List[ExecutionRecord]:
        return list(self._records)

    def running(self) -> List[ExecutionRecord]:
        return [record for record in self._records if not record.finished]

    def latest(self) -> ExecutionRecord | None:
        return self._records[0] if self._records else None

    def clear(self) -> None:
        self._records.clear()
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._records)


__all__ = [
    "ExecutionHistory",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionReport",
    "ExecutionRequest",
    "NodeRun",
]
