from __future__ import annotations

"""Graph model: mutations over the immutable graph value, with history."""

import logging
import secrets
from typing import Annotated, Any, Callable, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from automation_engine.history import HistoryStack
from automation_engine.models import Edge, Graph, Node, Position, Viewport
from automation_engine.nodes import CONDITION_HANDLES, NodeType, default_data

logger = logging.getLogger("automation.graph")

ChangeReason = Literal["load", "mutation", "undo", "redo"]
GraphListener = Callable[[Graph, ChangeReason], None]

DUPLICATE_OFFSET = 50.0


def new_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4)}"


class GraphError(Exception):
    """Base class for rejected graph mutations."""


class InvalidReference(GraphError):
    """Raised when a mutation references a node or edge that does not exist."""


class DuplicateReference(GraphError):
    """Raised when a mutation would add a node or edge that already exists."""


# Mutations --------------------------------------------------------------------


class AddNode(BaseModel):
    kind: Literal["add_node"] = "add_node"
    node_type: NodeType
    position: Position = Field(default_factory=Position)
    data: Optional[Dict[str, Any]] = None
    node_id: str = Field(default_factory=lambda: new_id("node"))


class MoveNode(BaseModel):
    kind: Literal["move_node"] = "move_node"
    node_id: str
    position: Position


class UpdateNode(BaseModel):
    """Merge ``data`` into the node's configuration, or replace it outright."""

    kind: Literal["update_node"] = "update_node"
    node_id: str
    data: Dict[str, Any]
    replace: bool = False


class RemoveNode(BaseModel):
    kind: Literal["remove_node"] = "remove_node"
    node_id: str


class DuplicateNode(BaseModel):
    kind: Literal["duplicate_node"] = "duplicate_node"
    node_id: str
    new_node_id: str = Field(default_factory=lambda: new_id("node"))


class ToggleNodeDisabled(BaseModel):
    kind: Literal["toggle_node_disabled"] = "toggle_node_disabled"
    node_id: str


class AddEdge(BaseModel):
    kind: Literal["add_edge"] = "add_edge"
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    edge_id: str = Field(default_factory=lambda: new_id("edge"))


class RemoveEdge(BaseModel):
    kind: Literal["remove_edge"] = "remove_edge"
    edge_id: str


class SetViewport(BaseModel):
    kind: Literal["set_viewport"] = "set_viewport"
    viewport: Viewport


Mutation = Annotated[
    Union[
        AddNode,
        MoveNode,
        UpdateNode,
        RemoveNode,
        DuplicateNode,
        ToggleNodeDisabled,
        AddEdge,
        RemoveEdge,
        SetViewport,
    ],
    Field(discriminator="kind"),
]


def _require_node(graph: Graph, node_id: str) -> Node:
    node = graph.get_node(node_id)
    if node is None:
        raise InvalidReference(f"Node '{node_id}' does not exist.")
    return node


def _replace_node(graph: Graph, node: Node) -> Graph:
    nodes = tuple(node if existing.id == node.id else existing for existing in graph.nodes)
    return graph.model_copy(update={"nodes": nodes})


def _add_node(graph: Graph, mutation: AddNode) -> Graph:
    if graph.has_node(mutation.node_id):
        raise DuplicateReference(f"Node '{mutation.node_id}' already exists.")
    data = default_data(mutation.node_type)
    if mutation.data:
        data.update(mutation.data)
    node = Node(id=mutation.node_id, type=mutation.node_type, position=mutation.position, data=data)
    return graph.model_copy(update={"nodes": graph.nodes + (node,)})


def _move_node(graph: Graph, mutation: MoveNode) -> Graph:
    node = _require_node(graph, mutation.node_id)
    return _replace_node(graph, node.model_copy(update={"position": mutation.position}))


def _update_node(graph: Graph, mutation: UpdateNode) -> Graph:
    node = _require_node(graph, mutation.node_id)
    data = dict(mutation.data) if mutation.replace else {**node.data, **mutation.data}
    return _replace_node(graph, node.model_copy(update={"data": data}))


def _remove_node(graph: Graph, mutation: RemoveNode) -> Graph:
    _require_node(graph, mutation.node_id)
    nodes = tuple(node for node in graph.nodes if node.id != mutation.node_id)
    edges = tuple(edge for edge in graph.edges if not edge.connects(mutation.node_id))
    dropped = len(graph.edges) - len(edges)
    if dropped:
        logger.debug("Removed %d edge(s) attached to node %s", dropped, mutation.node_id)
    return graph.model_copy(update={"nodes": nodes, "edges": edges})


def _duplicate_node(graph: Graph, mutation: DuplicateNode) -> Graph:
    node = _require_node(graph, mutation.node_id)
    if graph.has_node(mutation.new_node_id):
        raise DuplicateReference(f"Node '{mutation.new_node_id}' already exists.")
    copy = node.model_copy(
        update={
            "id": mutation.new_node_id,
            "data": dict(node.data),
            "position": Position(
                x=node.position.x + DUPLICATE_OFFSET,
                y=node.position.y + DUPLICATE_OFFSET,
            ),
            "selected": True,
        }
    )
    nodes = tuple(existing.model_copy(update={"selected": False}) for existing in graph.nodes)
    return graph.model_copy(update={"nodes": nodes + (copy,)})


def _toggle_node_disabled(graph: Graph, mutation: ToggleNodeDisabled) -> Graph:
    node = _require_node(graph, mutation.node_id)
    data = {**node.data, "disabled": not node.disabled}
    return _replace_node(graph, node.model_copy(update={"data": data}))


def _add_edge(graph: Graph, mutation: AddEdge) -> Graph:
    source = _require_node(graph, mutation.source)
    if source.type == "logic-condition" and mutation.source_handle not in CONDITION_HANDLES:
        raise InvalidReference(
            f"Condition node '{source.id}' has no output '{mutation.source_handle}'."
        )
    _require_node(graph, mutation.target)
    edge = Edge(
        id=mutation.edge_id,
        source=mutation.source,
        target=mutation.target,
        source_handle=mutation.source_handle,
        target_handle=mutation.target_handle,
    )
    if graph.get_edge(edge.id) is not None:
        raise DuplicateReference(f"Edge '{edge.id}' already exists.")
    if any(existing.same_connection(edge) for existing in graph.edges):
        raise DuplicateReference(f"Nodes '{edge.source}' -> '{edge.target}' are already connected.")
    return graph.model_copy(update={"edges": graph.edges + (edge,)})


def _remove_edge(graph: Graph, mutation: RemoveEdge) -> Graph:
    if graph.get_edge(mutation.edge_id) is None:
        raise InvalidReference(f"Edge '{mutation.edge_id}' does not exist.")
    edges = tuple(edge for edge in graph.edges if edge.id != mutation.edge_id)
    return graph.model_copy(update={"edges": edges})


def _set_viewport(graph: Graph, mutation: SetViewport) -> Graph:
    return graph.model_copy(update={"viewport": mutation.viewport})


_APPLIERS: Dict[str, Callable[[Graph, Any], Graph]] = {
    "add_node": _add_node,
    "move_node": _move_node,
    "update_node": _update_node,
    "remove_node": _remove_node,
    "duplicate_node": _duplicate_node,
    "toggle_node_disabled": _toggle_node_disabled,
    "add_edge": _add_edge,
    "remove_edge": _remove_edge,
    "set_viewport": _set_viewport,
}


def apply_to(graph: Graph, mutation: Mutation) -> Graph:
    """Return the graph that results from applying ``mutation`` to ``graph``."""

    return _APPLIERS[mutation.kind](graph, mutation)


class GraphModel:
    """Canonical in-memory graph of one editing session.

    Every accepted mutation records the previous graph in the history stack
    and notifies listeners. Rejected mutations leave graph, history and
    listeners untouched.
    """

    def __init__(self, history: HistoryStack | None = None) -> None:
        self._graph = Graph()
        self._history = history or HistoryStack()
        self._listeners: List[GraphListener] = []

    @property
    def history(self) -> HistoryStack:
        return self._history

    def subscribe(self, listener: GraphListener) -> None:
        self._listeners.append(listener)

    def _notify(self, reason: ChangeReason) -> None:
        for listener in list(self._listeners):
            listener(self._graph, reason)

    def load_graph(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        viewport: Viewport | None = None,
    ) -> Graph:
        """Replace the whole graph and forget all history."""

        graph = Graph(nodes=tuple(nodes), edges=tuple(edges), viewport=viewport or Viewport())
        dangling = graph.dangling_edges()
        if dangling:
            logger.warning("Dropping %d dangling edge(s) on load", len(dangling))
            graph = graph.model_copy(
                update={"edges": tuple(edge for edge in graph.edges if edge not in dangling)}
            )
        self._graph = graph
        self._history.clear()
        self._notify("load")
        return graph

    def current_graph(self) -> Graph:
        return self._graph

    def selected_node(self) -> Node | None:
        return self._graph.selected_node()

    def apply_mutation(self, mutation: Mutation) -> Graph:
        """Apply ``mutation``; raises :class:`GraphError` without side effects."""

        updated = apply_to(self._graph, mutation)
        self._history.snapshot(self._graph)
        self._graph = updated
        self._notify("mutation")
        return updated

    def undo(self) -> Graph | None:
        previous = self._history.undo(self._graph)
        if previous is None:
            return None
        self._graph = previous
        self._notify("undo")
        return previous

    def redo(self) -> Graph | None:
        following = self._history.redo(self._graph)
        if following is None:
            return None
        self._graph = following
        self._notify("redo")
        return following

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    # Selection is transient: no history entry, no change notification.

    def select_node(self, node_id: str, *, additive: bool = False) -> None:
        _require_node(self._graph, node_id)
        self._set_selection(lambda node: node.id == node_id or (additive and node.selected))

    def select_all(self) -> None:
        self._set_selection(lambda node: True)

    def deselect_all(self) -> None:
        self._set_selection(lambda node: False)

    def _set_selection(self, predicate: Callable[[Node], bool]) -> None:
        nodes = tuple(node.model_copy(update={"selected": predicate(node)}) for node in self._graph.nodes)
        self._graph = self._graph.model_copy(update={"nodes": nodes})

    def clear(self) -> None:
        """Drop graph, history and listeners when the session closes."""

        self._history.clear()
        self._listeners.clear()
        self._graph = Graph()


__all__ = [
    "AddEdge",
    "AddNode",
    "ChangeReason",
    "DuplicateNode",
    "DuplicateReference",
    "GraphError",
    "GraphModel",
    "InvalidReference",
    "MoveNode",
    "Mutation",
    "RemoveEdge",
    "RemoveNode",
    "SetViewport",
    "ToggleNodeDisabled",
    "UpdateNode",
    "apply_to",
    "new_id",
]
