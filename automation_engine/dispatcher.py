from __future__ import annotations

"""Test and live run dispatch for one editing session."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from automation_engine.collaborators import ExecutionBackend
from automation_engine.executions import (
    ExecutionHistory,
    ExecutionRecord,
    ExecutionReport,
    ExecutionRequest,
)
from automation_engine.models import Automation, utcnow
from automation_engine.status import StatusMachine, TransitionError
from automation_engine.validation import validate_graph

logger = logging.getLogger("automation.dispatcher")


class DispatchError(Exception):
    """Base class for dispatcher failures."""


class ExecutionBlocked(DispatchError):
    """A run was refused before anything was sent to the execution backend."""


class ExecutionFailure(DispatchError):
    """The execution backend failed or reported an unsuccessful run.

    Recorded on the run's history entry; never raised out of a dispatch.
    """

    def __init__(
        self,
        execution_id: str,
        message: str,
        report: ExecutionReport | None = None,
    ) -> None:
        super().__init__(message)
        self.execution_id = execution_id
        self.report = report


class PendingConfirmation(BaseModel):
    """Returned instead of a run when the manual trigger asks for confirmation."""

    token: str = Field(default_factory=lambda: str(uuid4()))
    automation_id: str
    button_label: Optional[str] = None
    trigger_data: Optional[Dict[str, Any]] = None


def sample_trigger_data(automation: Automation) -> Dict[str, Any]:
    """Plausible ``trigger_data`` for a test run, keyed by trigger type."""

    now = utcnow().isoformat()
    if automation.trigger_type == "event":
        event = str(automation.trigger_config.get("event") or "lead.created")
        if event.startswith("lead."):
            return {
                "lead": {
                    "id": "test-lead-id",
                    "name": "Test Lead",
                    "email": "test@example.com",
                    "phone": "+1234567890",
                    "company": "Test Company",
                    "status": "new",
                    "data": {"source": "test"},
                    "created_at": now,
                    "updated_at": now,
                },
                "event": event,
                "timestamp": now,
            }
        if event.startswith("conversation."):
            return {
                "conversation": {
                    "id": "test-conversation-id",
                    "status": "active",
                    "channel": "widget",
                    "metadata": {},
                    "created_at": now,
                },
                "event": event,
                "timestamp": now,
            }
        if event == "message.received":
            return {
                "message": {
                    "id": "test-message-id",
                    "conversation_id": "test-conversation-id",
                    "role": "user",
                    "content": "Hello, this is a test message",
                    "created_at": now,
                },
                "conversation_id": "test-conversation-id",
                "event": event,
                "timestamp": now,
            }
        return {"event": event, "timestamp": now}
    if automation.trigger_type == "schedule":
        return {"scheduled_at": now, "event": "schedule.triggered"}
    if automation.trigger_type == "manual":
        return {"triggered_by": "user", "event": "manual.triggered", "timestamp": now}
    return {}


LiveResult = Union[ExecutionRecord, PendingConfirmation]


class ExecutionDispatcher:
    """Starts runs, tracks the in-flight ones and feeds the history view.

    Test runs never touch status. A failed live run escalates the automation
    to ``error``. Runs are independent of the autosave coordinator: they
    execute what the store holds.
    """

    def __init__(
        self,
        automation: Callable[[], Automation],
        backend: ExecutionBackend,
        status: StatusMachine,
        history: ExecutionHistory,
        *,
        is_dirty: Callable[[], bool] = lambda: False,
        require_clean_for_test: bool = True,
    ) -> None:
        self._automation = automation
        self._backend = backend
        self._status = status
        self._history = history
        self._is_dirty = is_dirty
        self._require_clean_for_test = require_clean_for_test
        self._tasks: Dict[str, asyncio.Task[ExecutionRecord]] = {}
        self._pending: Dict[str, PendingConfirmation] = {}
        self._closed = False

    @property
    def history(self) -> ExecutionHistory:
        return self._history

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def pending_confirmation(self, token: str) -> PendingConfirmation | None:
        return self._pending.get(token)

    async def trigger_test(
        self,
        trigger_data: Dict[str, Any] | None = None,
        *,
        wait: bool = True,
    ) -> ExecutionRecord:
        """Start a test run. Concurrent test runs are allowed."""

        self._ensure_open()
        automation = self._automation()
        if self._require_clean_for_test and self._is_dirty():
            raise ExecutionBlocked("Save your changes before testing")
        self._check_configured(automation)
        if trigger_data is None:
            trigger_data = sample_trigger_data(automation)
        return await self._start(test_mode=True, trigger_data=trigger_data, wait=wait)

    async def trigger_live(
        self,
        trigger_data: Dict[str, Any] | None = None,
        *,
        wait: bool = True,
    ) -> LiveResult:
        """Start a live run of a manual automation, or ask for confirmation."""

        self._ensure_open()
        automation = self._automation()
        if automation.trigger_type != "manual":
            raise ExecutionBlocked("Only manual automations can be run on demand")
        if self._status.status != "active":
            raise ExecutionBlocked("Activate the automation before running it")
        self._check_live_ready(automation)
        try:
            config = automation.trigger_settings()
        except ValidationError as exc:
            raise ExecutionBlocked(f"Invalid trigger configuration: {exc}") from exc
        if config.require_confirmation:
            pending = PendingConfirmation(
                automation_id=automation.id,
                button_label=config.button_label,
                trigger_data=trigger_data,
            )
            self._pending[pending.token] = pending
            logger.info("Live run of %s awaiting confirmation", automation.id)
            return pending
        return await self._start(test_mode=False, trigger_data=trigger_data, wait=wait)

    async def confirm(self, token: str, *, wait: bool = True) -> ExecutionRecord:
        """Run a live execution that was waiting for confirmation."""

        self._ensure_open()
        pending = self._pending.pop(token, None)
        if pending is None:
            raise ExecutionBlocked("Unknown or already used confirmation")
        self._check_live_ready(self._automation())
        return await self._start(test_mode=False, trigger_data=pending.trigger_data, wait=wait)

    def cancel_confirmation(self, token: str) -> bool:
        return self._pending.pop(token, None) is not None

    def _check_configured(self, automation: Automation) -> None:
        validation = validate_graph(automation.graph())
        if not validation.valid:
            raise ExecutionBlocked(f"Fix configuration issues first ({validation.summary()})")

    def _check_live_ready(self, automation: Automation) -> None:
        if self._is_dirty():
            raise ExecutionBlocked("Save your changes before running")
        self._check_configured(automation)
        if any(not record.test_mode for record in self._history.running()):
            raise ExecutionBlocked("A live run is already in progress")

    async def _start(
        self,
        *,
        test_mode: bool,
        trigger_data: Dict[str, Any] | None,
        wait: bool,
    ) -> ExecutionRecord:
        automation = self._automation()
        request = ExecutionRequest(
            automation_id=automation.id,
            test_mode=test_mode,
            trigger_data=trigger_data,
        )
        record = self._history.prepend(
            ExecutionRecord(
                id=request.execution_id,
                automation_id=automation.id,
                test_mode=test_mode,
                trigger_data=trigger_data,
            )
        )
        logger.info(
            "Dispatching %s run %s for %s",
            "test" if test_mode else "live",
            record.id,
            automation.id,
        )
        task = asyncio.ensure_future(self._run(record, request))
        self._tasks[record.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record.id, None))
        if wait:
            return await task
        return record

    async def _invoke(self, request: ExecutionRequest) -> ExecutionReport:
        try:
            report = await self._backend.invoke(request)
        except Exception as exc:
            raise ExecutionFailure(request.execution_id, str(exc)) from exc
        if not report.success:
            raise ExecutionFailure(request.execution_id, report.error or "Execution failed", report)
        return report

    async def _run(self, record: ExecutionRecord, request: ExecutionRequest) -> ExecutionRecord:
        try:
            report = await self._invoke(request)
        except ExecutionFailure as failure:
            logger.warning("Execution %s failed: %s", failure.execution_id, failure)
            if self._closed:
                return record
            self._history.complete(record.id, "failure", report=failure.report, error=str(failure))
        else:
            if self._closed:
                return record
            self._history.complete(record.id, "success", report=report)

        if record.outcome == "failure" and not record.test_mode:
            await self._escalate(record)
        return record

    async def _escalate(self, record: ExecutionRecord) -> None:
        try:
            await self._status.mark_error()
        except TransitionError:
            logger.exception("Could not escalate %s after failed run %s", record.automation_id, record.id)

    async def wait_all(self) -> None:
        """Wait for every run started by this dispatcher."""

        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ExecutionBlocked("Editing session is closed")

    def close(self) -> None:
        """Forget confirmations; in-flight runs finish and are ignored."""

        self._closed = True
        self._pending.clear()


__all__ = [
    "DispatchError",
    "ExecutionBlocked",
    "ExecutionDispatcher",
    "ExecutionFailure",
    "LiveResult",
    "PendingConfirmation",
    "sample_trigger_data",
]
