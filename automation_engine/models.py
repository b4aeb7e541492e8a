from __future__ import annotations

"""Graph and automation models shared by the engine components."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from automation_engine.nodes import NodeType, TriggerType, trigger_node_type

AutomationStatus = Literal["draft", "active", "paused", "error"]
"""Lifecycle states of an automation."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Position(BaseModel):
    """Canvas coordinate of a node. Layout only."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class Viewport(BaseModel):
    """Canvas pan and zoom."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0


class Node(BaseModel):
    """A typed unit of work in the graph.

    ``data`` is owned by the per-type configuration panels; the engine only
    reads ``label`` and ``disabled`` from it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: NodeType
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)
    selected: bool = False

    @property
    def label(self) -> str:
        return str(self.data.get("label") or self.type)

    @property
    def disabled(self) -> bool:
        return bool(self.data.get("disabled", False))


class Edge(BaseModel):
    """Directed connection between two nodes, optionally tagged with handles."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")

    def connects(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def same_connection(self, other: "Edge") -> bool:
        return (
            self.source == other.source
            and self.target == other.target
            and self.source_handle == other.source_handle
            and self.target_handle == other.target_handle
        )


class Graph(BaseModel):
    """Immutable nodes + edges + viewport value; the unit of undo and autosave."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    viewport: Viewport = Field(default_factory=Viewport)

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None

    def get_edge(self, edge_id: str) -> Edge | None:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def outgoing(self, node_id: str) -> list[Edge]:
        """Return edges leaving ``node_id`` in insertion order."""

        return [edge for edge in self.edges if edge.source == node_id]

    def selected_node(self) -> Node | None:
        """Return the first selected node in node order."""

        for node in self.nodes:
            if node.selected:
                return node
        return None

    def dangling_edges(self) -> list[Edge]:
        ids = {node.id for node in self.nodes}
        return [edge for edge in self.edges if edge.source not in ids or edge.target not in ids]

    def to_payload(self) -> Dict[str, Any]:
        """Persisted shape of the graph (camelCase edge handles)."""

        return {
            "nodes": [node.model_dump(mode="json") for node in self.nodes],
            "edges": [edge.model_dump(mode="json", by_alias=True) for edge in self.edges],
            "viewport": self.viewport.model_dump(mode="json"),
        }


# Trigger configuration ---------------------------------------------------------


class EventTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event: str = "lead.created"
    filters: Dict[str, Any] = Field(default_factory=dict)


class ScheduleTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    cron_expression: str = Field(default="", alias="cronExpression")
    timezone: str = "UTC"


class ManualTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    button_label: Optional[str] = Field(default=None, alias="buttonLabel")
    require_confirmation: bool = Field(default=False, alias="requireConfirmation")


class AIToolParameter(BaseModel):
    name: str
    type: Literal["string", "number", "boolean"] = "string"
    description: str = ""
    required: bool = False


class AIToolTriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tool_name: str = Field(default="", alias="toolName")
    tool_description: str = Field(default="", alias="toolDescription")
    parameters: List[AIToolParameter] = Field(default_factory=list)


TRIGGER_CONFIG_MODELS: Dict[str, type[BaseModel]] = {
    "event": EventTriggerConfig,
    "schedule": ScheduleTriggerConfig,
    "manual": ManualTriggerConfig,
    "ai-tool": AIToolTriggerConfig,
}


def parse_trigger_config(trigger_type: str, payload: Dict[str, Any] | None) -> BaseModel:
    """Interpret a raw ``trigger_config`` payload according to its trigger type."""

    try:
        model = TRIGGER_CONFIG_MODELS[trigger_type]
    except KeyError as exc:
        raise ValueError(f"Unknown trigger type '{trigger_type}'.") from exc
    return model.model_validate(payload or {})


# Automation records ------------------------------------------------------------


class AutomationDraft(BaseModel):
    """Input for creating an automation."""

    name: str
    description: Optional[str] = None
    trigger_type: TriggerType = "manual"
    trigger_config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_trigger_config(self) -> "AutomationDraft":
        parse_trigger_config(self.trigger_type, self.trigger_config)
        return self


class Automation(BaseModel):
    """Persisted automation record."""

    id: str
    name: str
    description: Optional[str] = None
    status: AutomationStatus = "draft"
    enabled: bool = False
    trigger_type: TriggerType = "manual"
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    last_execution_status: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def graph(self) -> Graph:
        return Graph(nodes=tuple(self.nodes), edges=tuple(self.edges), viewport=self.viewport)

    def trigger_settings(self) -> BaseModel:
        return parse_trigger_config(self.trigger_type, self.trigger_config)


def initial_trigger_node(trigger_type: str) -> Node:
    """The single trigger node every new automation starts with."""

    return Node(
        id="trigger-1",
        type=trigger_node_type(trigger_type),
        position=Position(x=250, y=50),
        data={"label": f"{trigger_type.replace('-', ' ').title()} Trigger"},
    )


__all__ = [
    "AIToolParameter",
    "AIToolTriggerConfig",
    "Automation",
    "AutomationDraft",
    "AutomationStatus",
    "Edge",
    "EventTriggerConfig",
    "Graph",
    "ManualTriggerConfig",
    "Node",
    "Position",
    "ScheduleTriggerConfig",
    "TRIGGER_CONFIG_MODELS",
    "Viewport",
    "initial_trigger_node",
    "parse_trigger_config",
    "utcnow",
]
