from __future__ import annotations

"""External collaborator contracts and the in-memory persistence store."""

import asyncio
import logging
from typing import Any, Dict, List, Protocol
from uuid import uuid4

from automation_engine.executions import ExecutionRecord, ExecutionReport, ExecutionRequest
from automation_engine.models import Automation, AutomationDraft, initial_trigger_node, utcnow

logger = logging.getLogger("automation.store")

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "status",
        "enabled",
        "trigger_type",
        "trigger_config",
        "nodes",
        "edges",
        "viewport",
    }
)


class AutomationNotFound(KeyError):
    """Raised when an automation id is unknown to the store."""

    def __init__(self, automation_id: str) -> None:
        super().__init__(f"Automation '{automation_id}' not found.")
        self.automation_id = automation_id


class AutomationStore(Protocol):
    """Persistence collaborator."""

    async def create_automation(self, draft: AutomationDraft) -> Automation: ...

    async def get_automation(self, automation_id: str) -> Automation: ...

    async def update_automation(self, automation_id: str, partial: Dict[str, Any]) -> Automation: ...

    async def delete_automation(self, automation_id: str) -> None: ...

    async def list_executions(self, automation_id: str) -> List[ExecutionRecord]: ...


class ExecutionBackend(Protocol):
    """Execution collaborator."""

    async def invoke(self, request: ExecutionRequest) -> ExecutionReport: ...


class InMemoryAutomationStore:
    """Process-local automation store. Last writer wins."""

    def __init__(self) -> None:
        self._automations: Dict[str, Automation] = {}
        self._executions: Dict[str, List[ExecutionRecord]] = {}
        self._lock = asyncio.Lock()

    async def create_automation(self, draft: AutomationDraft) -> Automation:
        """Persist a new draft automation holding a single trigger node."""

        automation = Automation(
            id=str(uuid4()),
            name=draft.name,
            description=draft.description,
            trigger_type=draft.trigger_type,
            trigger_config=dict(draft.trigger_config),
            nodes=[initial_trigger_node(draft.trigger_type)],
        )
        async with self._lock:
            self._automations[automation.id] = automation
        logger.info("Created automation %s (%s)", automation.id, automation.name)
        return automation.model_copy(deep=True)

    async def get_automation(self, automation_id: str) -> Automation:
        async with self._lock:
            try:
                return self._automations[automation_id].model_copy(deep=True)
            except KeyError as exc:
                raise AutomationNotFound(automation_id) from exc

    async def update_automation(self, automation_id: str, partial: Dict[str, Any]) -> Automation:
        """Apply a partial update; unknown fields are rejected."""

        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        async with self._lock:
            current = self._automations.get(automation_id)
            if current is None:
                raise AutomationNotFound(automation_id)
            payload = current.model_dump()
            payload.update(partial)
            payload["updated_at"] = utcnow()
            updated = Automation.model_validate(payload)
            self._automations[automation_id] = updated
        return updated.model_copy(deep=True)

    async def delete_automation(self, automation_id: str) -> None:
        async with self._lock:
            if self._automations.pop(automation_id, None) is None:
                raise AutomationNotFound(automation_id)
            self._executions.pop(automation_id, None)
        logger.info("Deleted automation %s", automation_id)

    async def record_execution(self, record: ExecutionRecord) -> None:
        """Store (or replace) an execution and update the run counters."""

        async with self._lock:
            automation = self._automations.get(record.automation_id)
            if automation is None:
                raise AutomationNotFound(record.automation_id)
            history = self._executions.setdefault(record.automation_id, [])
            history[:] = [existing for existing in history if existing.id != record.id]
            history.append(record.model_copy(deep=True))
            if record.finished and not record.test_mode:
                automation.execution_count += 1
                automation.last_executed_at = record.finished_at
                automation.last_execution_status = "completed" if record.outcome == "success" else "failed"

    async def list_executions(self, automation_id: str) -> List[ExecutionRecord]:
        async with self._lock:
            if automation_id not in self._automations:
                raise AutomationNotFound(automation_id)
            records = [record.model_copy(deep=True) for record in self._executions.get(automation_id, [])]
        return sorted(records, key=lambda record: record.started_at, reverse=True)

    def exists(self, automation_id: str) -> bool:
        return automation_id in self._automations


__all__ = [
    "AutomationNotFound",
    "AutomationStore",
    "ExecutionBackend",
    "InMemoryAutomationStore",
    "UPDATABLE_FIELDS",
]
