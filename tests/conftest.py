from __future__ import annotations

"""Shared fixtures: an instrumented in-memory store and fast settings."""

import asyncio
from typing import Any, Dict, List

import pytest

from automation_engine.collaborators import InMemoryAutomationStore
from automation_engine.config import Settings
from automation_engine.executions import ExecutionReport, ExecutionRequest


class RecordingStore(InMemoryAutomationStore):
    """Store that records updates and can be made to block or fail."""

    def __init__(self) -> None:
        super().__init__()
        self.updates: List[Dict[str, Any]] = []
        self.fail = False
        self.gate: asyncio.Event | None = None

    @property
    def graph_saves(self) -> List[Dict[str, Any]]:
        return [update for update in self.updates if "nodes" in update]

    async def update_automation(self, automation_id: str, partial: Dict[str, Any]):
        self.updates.append(partial)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("store unavailable")
        return await super().update_automation(automation_id, partial)


class ScriptedBackend:
    """Execution collaborator returning canned reports."""

    def __init__(self, *, success: bool = True, raises: Exception | None = None) -> None:
        self.success = success
        self.raises = raises
        self.requests: List[ExecutionRequest] = []
        self.gate: asyncio.Event | None = None

    async def invoke(self, request: ExecutionRequest) -> ExecutionReport:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.raises is not None:
            raise self.raises
        return ExecutionReport(
            execution_id=request.execution_id,
            success=self.success,
            error=None if self.success else "node exploded",
            error_node_id=None if self.success else "B",
        )


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        autosave_debounce_seconds=0.02,
        history_limit=50,
        node_timeout_seconds=1.0,
        max_delay_seconds=0.01,
        require_clean_for_test=True,
    )
