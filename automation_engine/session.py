from __future__ import annotations

"""Editing session: one open automation with its graph, history and save state."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from automation_engine.autosave import AutosaveCoordinator, SaveState
from automation_engine.collaborators import AutomationStore, ExecutionBackend
from automation_engine.config import Settings, get_settings
from automation_engine.dispatcher import ExecutionDispatcher, LiveResult
from automation_engine.executions import ExecutionHistory, ExecutionRecord
from automation_engine.graph import (
    AddEdge,
    AddNode,
    ChangeReason,
    DuplicateNode,
    GraphError,
    GraphModel,
    Mutation,
    UpdateNode,
)
from automation_engine.history import HistoryStack
from automation_engine.models import (
    Automation,
    AutomationStatus,
    Graph,
    Node,
    Position,
    parse_trigger_config,
    utcnow,
)
from automation_engine.registry import PanelRegistry
from automation_engine.status import StatusMachine
from automation_engine.validation import ValidationResult, validate_graph

logger = logging.getLogger("automation.session")

SessionEvent = Dict[str, Any]
EventListener = Callable[[SessionEvent], None]

METADATA_FIELDS = ("name", "description", "trigger_config")


class SessionClosed(Exception):
    """Raised when an operation targets a closed editing session."""


class MutationResult(BaseModel):
    """Outcome of a graph edit as seen by the caller."""

    applied: bool
    error: Optional[str] = None


class EditorSession:
    """Owns every piece of engine state for one open automation.

    Built per open automation and torn down by :meth:`close`; nothing in it
    is shared with other sessions.
    """

    def __init__(
        self,
        automation: Automation,
        store: AutomationStore,
        backend: ExecutionBackend,
        *,
        settings: Settings | None = None,
        panels: PanelRegistry | None = None,
        debounce_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = settings or get_settings()
        self._automation = automation.model_copy(deep=True)
        self._store = store
        self._panels = panels or PanelRegistry()
        self._closed = False
        self._listeners: List[EventListener] = []

        self.graph = GraphModel(HistoryStack(settings.history_limit))
        self.autosave = AutosaveCoordinator(
            automation.id,
            store,
            debounce_seconds=(
                settings.autosave_debounce_seconds if debounce_seconds is None else debounce_seconds
            ),
            clock=clock,
        )
        self.status = StatusMachine(
            automation.id,
            store,
            status=automation.status,
            is_dirty=lambda: self.autosave.is_dirty,
            current_graph=self.graph.current_graph,
        )
        self.executions = ExecutionHistory()
        self.dispatcher = ExecutionDispatcher(
            self.automation_snapshot,
            backend,
            self.status,
            self.executions,
            is_dirty=lambda: self.autosave.is_dirty,
            require_clean_for_test=settings.require_clean_for_test,
        )

        self.graph.subscribe(self._on_graph_change)
        self.autosave.subscribe(self._on_save_state)
        self.executions.subscribe(self._on_execution)
        self.graph.load_graph(automation.nodes, automation.edges, automation.viewport)

    @classmethod
    async def open(
        cls,
        automation_id: str,
        store: AutomationStore,
        backend: ExecutionBackend,
        **kwargs: Any,
    ) -> "EditorSession":
        """Load ``automation_id`` from the store and start editing it."""

        automation = await store.get_automation(automation_id)
        session = cls(automation, store, backend, **kwargs)
        session.executions.seed(await store.list_executions(automation_id))
        logger.info("Opened editing session for %s", automation_id)
        return session

    # Wiring --------------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _on_graph_change(self, graph: Graph, reason: ChangeReason) -> None:
        if reason == "load":
            self.autosave.reset(graph)
        else:
            self.autosave.on_graph_changed(graph, reason)

    def _on_save_state(self, state: SaveState) -> None:
        self._emit({"type": "save_state", "state": state.model_dump(mode="json")})

    def _on_execution(self, record: ExecutionRecord) -> None:
        self._emit({"type": "execution", "record": record.model_dump(mode="json")})

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Editing session for '{self._automation.id}' is closed.")

    # Read side -----------------------------------------------------------------

    @property
    def automation_id(self) -> str:
        return self._automation.id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def save_state(self) -> SaveState:
        return self.autosave.state

    def automation_snapshot(self) -> Automation:
        """The automation as the editor currently sees it."""

        graph = self.graph.current_graph()
        return self._automation.model_copy(
            update={
                "status": self.status.status,
                "enabled": self.status.enabled,
                "nodes": list(graph.nodes),
                "edges": list(graph.edges),
                "viewport": graph.viewport,
            }
        )

    def current_graph(self) -> Graph:
        return self.graph.current_graph()

    def selected_node(self) -> Node | None:
        return self.graph.selected_node()

    def validate(self) -> ValidationResult:
        return validate_graph(self.graph.current_graph())

    # Editing -------------------------------------------------------------------

    def apply(self, mutation: Mutation) -> MutationResult:
        """Apply a mutation; rejected ones are logged and reported, never raised."""

        self._ensure_open()
        try:
            self.graph.apply_mutation(mutation)
        except GraphError as exc:
            logger.warning("Ignored %s on %s: %s", mutation.kind, self.automation_id, exc)
            return MutationResult(applied=False, error=str(exc))
        return MutationResult(applied=True)

    def add_node(
        self,
        node_type: str,
        position: Position | None = None,
        data: Dict[str, Any] | None = None,
    ) -> str:
        mutation = AddNode(node_type=node_type, position=position or Position(), data=data)
        self.apply(mutation)
        return mutation.node_id

    def connect(
        self,
        source: str,
        target: str,
        *,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Optional[str]:
        mutation = AddEdge(
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        return mutation.edge_id if self.apply(mutation).applied else None

    def duplicate_node(self, node_id: str) -> Optional[str]:
        mutation = DuplicateNode(node_id=node_id)
        return mutation.new_node_id if self.apply(mutation).applied else None

    def configure_node(self, node_id: str, changes: Dict[str, Any]) -> MutationResult:
        """Run the node type's configuration panel and store its result."""

        self._ensure_open()
        node = self.graph.current_graph().get_node(node_id)
        if node is None:
            return self.apply(UpdateNode(node_id=node_id, data=changes))
        panel = self._panels.resolve(node.type)
        data = panel(node_id, dict(node.data), changes)
        return self.apply(UpdateNode(node_id=node_id, data=data, replace=True))

    def undo(self) -> Graph | None:
        self._ensure_open()
        return self.graph.undo()

    def redo(self) -> Graph | None:
        self._ensure_open()
        return self.graph.redo()

    def can_undo(self) -> bool:
        return self.graph.can_undo()

    def can_redo(self) -> bool:
        return self.graph.can_redo()

    def select_node(self, node_id: str, *, additive: bool = False) -> MutationResult:
        self._ensure_open()
        try:
            self.graph.select_node(node_id, additive=additive)
        except GraphError as exc:
            return MutationResult(applied=False, error=str(exc))
        return MutationResult(applied=True)

    def select_all(self) -> None:
        self._ensure_open()
        self.graph.select_all()

    def deselect_all(self) -> None:
        self._ensure_open()
        self.graph.deselect_all()

    def update_metadata(self, **fields: Any) -> None:
        """Edit name, description or trigger_config; saved with the graph.

        Raises ``ValueError`` for other fields and for a trigger_config that
        does not fit the automation's trigger type.
        """

        self._ensure_open()
        unknown = set(fields) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Not editable here: {', '.join(sorted(unknown))}")
        if not fields:
            return
        if "trigger_config" in fields:
            parse_trigger_config(self._automation.trigger_type, fields["trigger_config"])
        self._automation = self._automation.model_copy(update=fields)
        self.autosave.update_metadata(**fields)

    async def save(self) -> datetime:
        self._ensure_open()
        return await self.autosave.save_now()

    # Lifecycle and runs ----------------------------------------------------------

    async def set_status(self, target: AutomationStatus) -> AutomationStatus:
        self._ensure_open()
        return await self.status.request(target)

    async def trigger_test(self, trigger_data: Dict[str, Any] | None = None, *, wait: bool = True) -> ExecutionRecord:
        self._ensure_open()
        return await self.dispatcher.trigger_test(trigger_data, wait=wait)

    async def trigger_live(self, trigger_data: Dict[str, Any] | None = None, *, wait: bool = True) -> LiveResult:
        self._ensure_open()
        return await self.dispatcher.trigger_live(trigger_data, wait=wait)

    async def confirm_live(self, token: str, *, wait: bool = True) -> ExecutionRecord:
        self._ensure_open()
        return await self.dispatcher.confirm(token, wait=wait)

    def close(self, reason: str = "closed") -> None:
        """Tear down: cancel the debounce timer, drop history and listeners.

        Listeners receive a final ``closed`` event first.
        """

        if self._closed:
            return
        self._closed = True
        self.autosave.close()
        self.dispatcher.close()
        self.graph.clear()
        self._emit({"type": "closed", "reason": reason})
        self._listeners.clear()
        logger.info("Closed editing session for %s", self.automation_id)


class SessionManager:
    """Open editing sessions keyed by automation id, one per automation."""

    def __init__(
        self,
        store: AutomationStore,
        backend: ExecutionBackend,
        *,
        settings: Settings | None = None,
        panels: PanelRegistry | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._settings = settings
        self._panels = panels
        self._sessions: Dict[str, EditorSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, automation_id: str) -> asyncio.Lock:
        lock = self._locks.get(automation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[automation_id] = lock
        return lock

    async def open(self, automation_id: str) -> EditorSession:
        """Return the open session for ``automation_id``, opening it if needed."""

        async with self._lock_for(automation_id):
            session = self._sessions.get(automation_id)
            if session is None or session.closed:
                session = await EditorSession.open(
                    automation_id,
                    self._store,
                    self._backend,
                    settings=self._settings,
                    panels=self._panels,
                )
                self._sessions[automation_id] = session
            return session

    def get(self, automation_id: str) -> EditorSession:
        try:
            return self._sessions[automation_id]
        except KeyError as exc:
            raise KeyError(f"No open session for automation '{automation_id}'.") from exc

    def is_open(self, automation_id: str) -> bool:
        return automation_id in self._sessions

    def close(self, automation_id: str, reason: str = "closed") -> bool:
        session = self._sessions.pop(automation_id, None)
        self._locks.pop(automation_id, None)
        if session is None:
            return False
        session.close(reason)
        return True

    def close_all(self) -> None:
        for automation_id in list(self._sessions):
            self.close(automation_id, reason="shutdown")


__all__ = [
    "EditorSession",
    "MutationResult",
    "SessionClosed",
    "SessionEvent",
    "SessionManager",
]
