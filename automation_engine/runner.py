from __future__ import annotations

"""In-process execution collaborator that walks a persisted automation graph."""

import asyncio
import logging
import operator
import time
from collections import deque
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel, Field

from automation_engine.collaborators import InMemoryAutomationStore
from automation_engine.executions import (
    ExecutionRecord,
    ExecutionReport,
    ExecutionRequest,
    NodeRun,
)
from automation_engine.models import Automation, Graph, Node, utcnow
from automation_engine.nodes import is_trigger
from automation_engine.registry import NodeTypeRegistry
from automation_engine.validation import get_nested, is_empty

logger = logging.getLogger("automation.runner")


class RunError(Exception):
    """Base class for runs that cannot start."""


class AutomationDisabled(RunError):
    """Raised for live runs of an automation that is not enabled."""


class MissingTrigger(RunError):
    """Raised when the graph has no trigger node to start from."""


class RunContext(BaseModel):
    """Mutable state shared by the nodes of one run."""

    automation_id: str
    execution_id: str
    test_mode: bool = False
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)

    def lookup(self, path: str) -> Any:
        """Resolve ``path`` against variables first, then trigger data."""

        value = get_nested(self.variables, path)
        if value is None:
            value = get_nested(self.trigger_data, path)
        return value


class NodeOutcome(BaseModel):
    """What a handler reports back for one node."""

    success: bool = True
    output: Any = None
    error: Optional[str] = None
    set_variables: Dict[str, Any] = Field(default_factory=dict)
    branch: Optional[str] = None
    stop: bool = False


NodeHandler = Callable[[Node, RunContext], Union[NodeOutcome, Awaitable[NodeOutcome]]]


def _contains(left: Any, right: Any) -> bool:
    if left is None:
        return False
    return str(right) in str(left) if isinstance(left, str) else right in left


CONDITION_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": operator.eq,
    "not_equals": operator.ne,
    "greater_than": operator.gt,
    "less_than": operator.lt,
    "contains": _contains,
    "is_empty": lambda left, _: is_empty(left),
    "is_not_empty": lambda left, _: not is_empty(left),
}


def evaluate_condition(condition: Dict[str, Any], context: RunContext) -> bool:
    """Evaluate a ``{field, operator, value}`` condition against the run."""

    op = CONDITION_OPERATORS.get(condition.get("operator", ""))
    if op is None:
        raise ValueError(f"Unsupported condition operator {condition.get('operator')!r}")
    left = context.lookup(str(condition.get("field", "")))
    try:
        return bool(op(left, condition.get("value")))
    except TypeError:
        return False


def _trigger_handler(node: Node, context: RunContext) -> NodeOutcome:
    return NodeOutcome(output=context.trigger_data)


def _condition_handler(node: Node, context: RunContext) -> NodeOutcome:
    result = evaluate_condition(node.data.get("condition") or {}, context)
    return NodeOutcome(output={"result": result}, branch="true" if result else "false")


def _stop_handler(node: Node, context: RunContext) -> NodeOutcome:
    return NodeOutcome(output={"reason": node.data.get("reason")}, stop=True)


def make_delay_handler(max_delay_seconds: float) -> NodeHandler:
    async def delay(node: Node, context: RunContext) -> NodeOutcome:
        requested = float(node.data.get("delayMs") or 0) / 1000
        waited = min(requested, max_delay_seconds)
        await asyncio.sleep(waited)
        return NodeOutcome(output={"requested_seconds": requested, "waited_seconds": waited})

    return delay


def builtin_handlers(max_delay_seconds: float = 5.0) -> NodeTypeRegistry[NodeHandler]:
    """Registry pre-populated with trigger and logic node handlers."""

    registry: NodeTypeRegistry[NodeHandler] = NodeTypeRegistry()
    for node_type in ("trigger-event", "trigger-schedule", "trigger-manual", "trigger-ai-tool"):
        registry.register(node_type, _trigger_handler)
    registry.register("logic-condition", _condition_handler)
    registry.register("logic-stop", _stop_handler)
    registry.register("logic-delay", make_delay_handler(max_delay_seconds))
    return registry


class LocalExecutionBackend:
    """Runs automations against the copy held by the store, not the editor's."""

    def __init__(
        self,
        store: InMemoryAutomationStore,
        *,
        handlers: NodeTypeRegistry[NodeHandler] | None = None,
        node_timeout: float | None = 30.0,
    ) -> None:
        self._store = store
        self._handlers = handlers or builtin_handlers()
        self._node_timeout = node_timeout

    @property
    def handlers(self) -> NodeTypeRegistry[NodeHandler]:
        return self._handlers

    async def invoke(self, request: ExecutionRequest) -> ExecutionReport:
        """Execute the stored automation and report per-node results."""

        automation = await self._store.get_automation(request.automation_id)
        if not request.test_mode and not automation.enabled:
            raise AutomationDisabled(f"Automation '{automation.id}' is disabled.")

        started = time.perf_counter()
        record = ExecutionRecord(
            id=request.execution_id,
            automation_id=automation.id,
            test_mode=request.test_mode,
            trigger_data=request.trigger_data,
        )
        if not request.test_mode:
            await self._store.record_execution(record)

        context = RunContext(
            automation_id=automation.id,
            execution_id=request.execution_id,
            test_mode=request.test_mode,
            trigger_data=dict(request.trigger_data or {}),
        )
        try:
            report = await self._walk(automation, context)
        except RunError as exc:
            if not request.test_mode:
                record.outcome = "failure"
                record.finished_at = utcnow()
                record.error = str(exc)
                record.duration_ms = (time.perf_counter() - started) * 1000
                await self._store.record_execution(record)
            raise
        report.duration_ms = (time.perf_counter() - started) * 1000

        if not request.test_mode:
            record.outcome = "success" if report.success else "failure"
            record.finished_at = utcnow()
            record.error = report.error
            record.error_node_id = report.error_node_id
            record.nodes_executed = report.nodes_executed
            record.duration_ms = report.duration_ms
            await self._store.record_execution(record)
        logger.info(
            "Execution %s of %s finished: %s",
            request.execution_id,
            automation.id,
            "success" if report.success else "failure",
        )
        return report

    async def _walk(self, automation: Automation, context: RunContext) -> ExecutionReport:
        graph: Graph = automation.graph()
        trigger = next((node for node in graph.nodes if is_trigger(node.type)), None)
        if trigger is None:
            raise MissingTrigger(f"Automation '{automation.id}' has no trigger node.")

        runs: list[NodeRun] = []
        executed: set[str] = set()
        queue: deque[str] = deque([trigger.id])

        while queue:
            node_id = queue.popleft()
            if node_id in executed:
                continue
            node = graph.get_node(node_id)
            if node is None:
                continue
            executed.add(node_id)

            if node.disabled:
                runs.append(NodeRun(node_id=node.id, node_type=node.type, status="skipped"))
                queue.extend(edge.target for edge in graph.outgoing(node_id))
                continue

            node_started = time.perf_counter()
            outcome = await self._run_node(node, context)
            runs.append(
                NodeRun(
                    node_id=node.id,
                    node_type=node.type,
                    status="success" if outcome.success else "error",
                    output=outcome.output,
                    error=outcome.error,
                    duration_ms=(time.perf_counter() - node_started) * 1000,
                )
            )
            context.variables.update(outcome.set_variables)

            if not outcome.success:
                logger.warning("Node %s failed: %s", node.id, outcome.error)
                return ExecutionReport(
                    execution_id=context.execution_id,
                    success=False,
                    error=outcome.error,
                    error_node_id=node.id,
                    nodes_executed=runs,
                    variables=context.variables,
                )
            if outcome.stop:
                break
            edges = graph.outgoing(node_id)
            if outcome.branch is not None:
                edges = [edge for edge in edges if edge.source_handle == outcome.branch][:1]
            queue.extend(edge.target for edge in edges)

        return ExecutionReport(
            execution_id=context.execution_id,
            success=True,
            nodes_executed=runs,
            variables=context.variables,
        )

    async def _run_node(self, node: Node, context: RunContext) -> NodeOutcome:
        """Invoke the node's handler with a timeout; failures become outcomes."""

        if not self._handlers.has(node.type):
            return NodeOutcome(success=False, error=f"No handler registered for '{node.type}'")
        handler = self._handlers.get(node.type)

        async def call() -> NodeOutcome:
            if asyncio.iscoroutinefunction(handler):
                return await handler(node, context)
            return await asyncio.to_thread(handler, node, context)

        try:
            outcome = await asyncio.wait_for(call(), timeout=self._node_timeout)
        except asyncio.TimeoutError:
            return NodeOutcome(success=False, error="Node execution timed out")
        except Exception as exc:
            logger.exception("Handler for node %s raised", node.id)
            return NodeOutcome(success=False, error=str(exc))

        if not isinstance(outcome, NodeOutcome):
            return NodeOutcome(
                success=False,
                error=f"Expected NodeOutcome, got {type(outcome)!r}",
            )
        return outcome


__all__ = [
    "AutomationDisabled",
    "CONDITION_OPERATORS",
    "LocalExecutionBackend",
    "MissingTrigger",
    "NodeHandler",
    "NodeOutcome",
    "RunContext",
    "RunError",
    "builtin_handlers",
    "evaluate_condition",
]
