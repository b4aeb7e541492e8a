from __future__ import annotations

"""Debounced, coalesced persistence of the graph and automation metadata.

State per open automation::

    clean -> dirty -> saving -> clean            (persist succeeded)
                      saving -> dirty + error    (persist failed)

Each graph change restarts a single debounce timer. When it fires while a
save is already in flight the request is remembered and one follow-up save
runs after the in-flight one finishes. At most one persist call is ever in
flight.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from automation_engine.collaborators import AutomationStore
from automation_engine.graph import ChangeReason
from automation_engine.models import Graph, utcnow

logger = logging.getLogger("automation.autosave")

DEFAULT_DEBOUNCE_SECONDS = 3.0

StateListener = Callable[["SaveState"], None]


class SaveError(Exception):
    """Raised when the persistence collaborator rejects a save."""

    def __init__(self, automation_id: str, message: str) -> None:
        super().__init__(f"Saving automation '{automation_id}' failed: {message}")
        self.automation_id = automation_id


class SaveState(BaseModel):
    """Everything the editor needs to render its save indicator."""

    is_dirty: bool = False
    is_saving: bool = False
    last_saved_at: Optional[datetime] = None
    last_error: bool = False
    error_message: Optional[str] = None

    def indicator(self, now: datetime | None = None) -> str:
        if self.is_saving:
            return "Saving..."
        if self.last_error:
            return "Save failed"
        if self.is_dirty:
            return "Unsaved changes"
        if self.last_saved_at is None:
            return "No changes"
        elapsed = int(((now or utcnow()) - self.last_saved_at).total_seconds())
        if elapsed < 10:
            return "Saved just now"
        if elapsed < 60:
            return f"Saved {elapsed} seconds ago"
        if elapsed < 3600:
            return f"Saved {elapsed // 60} min ago"
        return f"Saved {elapsed // 3600} h ago"


class AutosaveCoordinator:
    """Owns the :class:`SaveState` of one editing session."""

    def __init__(
        self,
        automation_id: str,
        store: AutomationStore,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._automation_id = automation_id
        self._store = store
        self._debounce = debounce_seconds
        self._clock = clock
        self._state = SaveState()
        self._graph = Graph()
        self._persisted_graph = Graph()
        self._pending_metadata: Dict[str, Any] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: asyncio.Future[Any] | None = None
        self._save_requested = False
        self._closed = False
        self._listeners: List[StateListener] = []

    # State -------------------------------------------------------------------

    @property
    def state(self) -> SaveState:
        return self._state.model_copy()

    @property
    def is_dirty(self) -> bool:
        return self._state.is_dirty

    @property
    def is_saving(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    # Inputs ------------------------------------------------------------------

    def reset(self, graph: Graph) -> None:
        """Treat ``graph`` as the persisted baseline (after load)."""

        self._cancel_timer()
        self._graph = graph
        self._persisted_graph = graph
        self._pending_metadata.clear()
        self._save_requested = False
        self._state = SaveState(last_saved_at=self._state.last_saved_at)
        self._notify()

    def on_graph_changed(self, graph: Graph, reason: ChangeReason = "mutation") -> None:
        """Record the latest graph and restart the debounce window."""

        if self._closed:
            return
        self._graph = graph
        if (
            reason in ("undo", "redo")
            and graph == self._persisted_graph
            and not self._pending_metadata
            and not self.is_saving
        ):
            # Undone back to what is stored: nothing left to save.
            self._cancel_timer()
            self._state.is_dirty = False
            self._state.last_error = False
            self._state.error_message = None
            self._notify()
            return
        self.mark_dirty()
        self._schedule()

    def update_metadata(self, **fields: Any) -> None:
        """Queue automation fields (name, trigger_config, ...) for the next save."""

        if self._closed:
            return
        self._pending_metadata.update(fields)
        self.mark_dirty()
        self._schedule()

    def mark_dirty(self) -> None:
        if not self._state.is_dirty:
            self._state.is_dirty = True
            self._notify()

    # Scheduling ----------------------------------------------------------------

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_timer()
        self._timer = loop.call_later(self._debounce, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._request_save()

    def _request_save(self) -> None:
        if self.is_saving:
            logger.debug("Save already in flight for %s; coalescing", self._automation_id)
            self._save_requested = True
            return
        self._in_flight = asyncio.ensure_future(self._background_save())

    def _follow_up(self) -> None:
        requested, self._save_requested = self._save_requested, False
        if requested and self._state.is_dirty and not self._closed:
            self._in_flight = asyncio.ensure_future(self._background_save())

    async def _background_save(self) -> None:
        try:
            await self._persist()
        except SaveError:
            # Surfaced through SaveState; the next edit or manual save retries.
            logger.exception("Autosave failed for %s", self._automation_id)
        finally:
            self._follow_up()

    async def _manual_save(self) -> datetime:
        try:
            return await self._persist()
        finally:
            self._follow_up()

    async def save_now(self) -> datetime:
        """Persist immediately, after any save that is already running.

        Returns the save timestamp or raises :class:`SaveError`.
        """

        if self._closed:
            raise SaveError(self._automation_id, "editing session is closed")
        self._cancel_timer()
        while self.is_saving:
            await asyncio.wait({self._in_flight})
        task = asyncio.ensure_future(self._manual_save())
        self._in_flight = task
        return await task

    async def _persist(self) -> datetime:
        graph = self._graph
        metadata = dict(self._pending_metadata)
        partial = {**metadata, **graph.to_payload()}
        self._state.is_saving = True
        self._notify()
        try:
            await self._store.update_automation(self._automation_id, partial)
        except Exception as exc:
            if not self._closed:
                self._state.is_saving = False
                self._state.is_dirty = True
                self._state.last_error = True
                self._state.error_message = str(exc)
                self._notify()
            raise SaveError(self._automation_id, str(exc)) from exc

        saved_at = self._clock()
        if self._closed:
            logger.debug("Discarding save result for closed session %s", self._automation_id)
            return saved_at
        self._persisted_graph = graph
        for key, value in metadata.items():
            if self._pending_metadata.get(key) == value:
                self._pending_metadata.pop(key)
        self._state.is_saving = False
        self._state.last_saved_at = saved_at
        self._state.last_error = False
        self._state.error_message = None
        # Edits that arrived while the persist call was running stay dirty.
        self._state.is_dirty = self._graph != graph or bool(self._pending_metadata)
        self._notify()
        logger.debug("Saved automation %s", self._automation_id)
        return saved_at

    # Teardown ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until no save is in flight."""

        while self.is_saving:
            await asyncio.wait({self._in_flight})

    def close(self) -> None:
        """Cancel the pending timer; an in-flight save finishes unobserved."""

        self._closed = True
        self._cancel_timer()
        self._save_requested = False
        self._listeners.clear()


__all__ = [
    "AutosaveCoordinator",
    "DEFAULT_DEBOUNCE_SECONDS",
    "SaveError",
    "SaveState",
]
