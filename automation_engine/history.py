from __future__ import annotations

"""Bounded undo/redo over immutable graph snapshots."""

import itertools
import logging
from collections import deque
from typing import Deque, Optional

from pydantic import BaseModel, ConfigDict

from automation_engine.models import Graph

logger = logging.getLogger("automation.history")

DEFAULT_HISTORY_LIMIT = 50


class HistoryEntry(BaseModel):
    """Snapshot of a graph plus its position in the edit sequence."""

    model_config = ConfigDict(frozen=True)

    sequence: int
    graph: Graph


class HistoryStack:
    """Two bounded sequences of snapshots: undo (past) and redo (future).

    Overflow silently evicts the oldest entry. Recording a new snapshot
    clears the redo sequence.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1.")
        self._limit = limit
        self._undo: Deque[HistoryEntry] = deque(maxlen=limit)
        self._redo: Deque[HistoryEntry] = deque(maxlen=limit)
        self._sequence = itertools.count(1)

    @property
    def limit(self) -> int:
        return self._limit

    def _entry(self, graph: Graph) -> HistoryEntry:
        return HistoryEntry(sequence=next(self._sequence), graph=graph)

    def snapshot(self, graph: Graph) -> HistoryEntry:
        """Record ``graph`` as the state to return to on undo."""

        entry = self._entry(graph)
        if len(self._undo) == self._limit:
            logger.debug("History full; evicting entry %s", self._undo[0].sequence)
        self._undo.append(entry)
        self._redo.clear()
        return entry

    def undo(self, current: Graph) -> Optional[Graph]:
        """Pop the latest snapshot, parking ``current`` on the redo sequence.

        Returns ``None`` when there is nothing to undo.
        """

        if not self._undo:
            return None
        entry = self._undo.pop()
        self._redo.append(self._entry(current))
        return entry.graph

    def redo(self, current: Graph) -> Optional[Graph]:
        """Mirror of :meth:`undo`."""

        if not self._redo:
            return None
        entry = self._redo.pop()
        self._undo.append(self._entry(current))
        return entry.graph

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def __len__(self) -> int:
        return len(self._undo)


__all__ = ["DEFAULT_HISTORY_LIMIT", "HistoryEntry", "HistoryStack"]
