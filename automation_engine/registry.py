from __future__ import annotations

"""Per-node-type registries for execution handlers and configuration panels."""

from typing import Any, Callable, Dict, Generic, TypeVar

from automation_engine.nodes import NODE_TYPES

T = TypeVar("T")

ConfigPanel = Callable[[str, Dict[str, Any], Dict[str, Any]], Dict[str, Any]]
"""``(node_id, data, changes) -> new data``. The engine treats data as opaque."""


class NodeTypeRegistry(Generic[T]):
    """Container mapping node types to one callable each."""

    def __init__(self, kind: str = "handler") -> None:
        self._kind = kind
        self._entries: Dict[str, T] = {}

    def register(self, node_type: str, entry: T) -> None:
        """Register ``entry`` for ``node_type``."""

        if node_type not in NODE_TYPES:
            raise ValueError(f"Unknown node type '{node_type}'.")
        if node_type in self._entries:
            raise ValueError(f"A {self._kind} for '{node_type}' is already registered.")
        self._entries[node_type] = entry

    def get(self, node_type: str) -> T:
        try:
            return self._entries[node_type]
        except KeyError as exc:
            raise KeyError(f"No {self._kind} registered for '{node_type}'.") from exc

    def has(self, node_type: str) -> bool:
        return node_type in self._entries


def merge_panel(node_id: str, data: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Fallback panel: shallow merge of the submitted fields."""

    return {**data, **changes}


class PanelRegistry(NodeTypeRegistry[ConfigPanel]):
    """Configuration panels, falling back to a plain merge."""

    def __init__(self) -> None:
        super().__init__(kind="panel")

    def resolve(self, node_type: str) -> ConfigPanel:
        return self._entries.get(node_type, merge_panel)


__all__ = ["ConfigPanel", "NodeTypeRegistry", "PanelRegistry", "merge_panel"]
