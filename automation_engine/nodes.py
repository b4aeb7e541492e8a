from __future__ import annotations

"""Node-type catalog: the closed taxonomy, categories and default data."""

from typing import Any, Dict, Literal, get_args

NodeType = Literal[
    "trigger-event",
    "trigger-schedule",
    "trigger-manual",
    "trigger-ai-tool",
    "action-http",
    "action-email",
    "action-update-lead",
    "logic-condition",
    "logic-delay",
    "logic-stop",
    "ai-generate",
    "ai-classify",
    "ai-extract",
]
"""Every node type an automation graph may contain."""

NodeCategory = Literal["trigger", "action", "logic", "ai"]

TriggerType = Literal["event", "schedule", "manual", "ai-tool"]
"""How an automation is started."""

NODE_TYPES: tuple[str, ...] = get_args(NodeType)
TRIGGER_TYPES: tuple[str, ...] = get_args(TriggerType)

_CATEGORY_PREFIXES: Dict[str, NodeCategory] = {
    "trigger-": "trigger",
    "action-": "action",
    "logic-": "logic",
    "ai-": "ai",
}

DEFAULT_NODE_DATA: Dict[str, Dict[str, Any]] = {
    "trigger-event": {"label": "Event Trigger", "event": "lead.created"},
    "trigger-schedule": {"label": "Scheduled Trigger"},
    "trigger-manual": {"label": "Manual Trigger"},
    "trigger-ai-tool": {"label": "AI Tool Trigger"},
    "action-http": {"label": "HTTP Request", "method": "POST", "url": ""},
    "action-email": {"label": "Send Email"},
    "action-update-lead": {"label": "Update Lead"},
    "logic-condition": {"label": "Condition"},
    "logic-delay": {"label": "Delay", "delayMs": 60000},
    "logic-stop": {"label": "Stop"},
    "ai-generate": {"label": "AI Generate", "outputVariable": "ai_response"},
    "ai-classify": {"label": "AI Classify", "categories": [], "outputVariable": "classification"},
    "ai-extract": {"label": "AI Extract", "fields": [], "outputVariable": "extracted"},
}

# Branch handles emitted by condition nodes.
CONDITION_HANDLES = ("true", "false")


def category_of(node_type: str) -> NodeCategory:
    """Return the category a node type belongs to."""

    for prefix, category in _CATEGORY_PREFIXES.items():
        if node_type.startswith(prefix):
            return category
    raise ValueError(f"Unknown node type '{node_type}'.")


def is_trigger(node_type: str) -> bool:
    return category_of(node_type) == "trigger"


def default_data(node_type: str) -> Dict[str, Any]:
    """Return a fresh copy of the catalog defaults for ``node_type``."""

    if node_type not in DEFAULT_NODE_DATA:
        raise ValueError(f"Unknown node type '{node_type}'.")
    data = dict(DEFAULT_NODE_DATA[node_type])
    for key, value in data.items():
        if isinstance(value, list):
            data[key] = list(value)
    return data


def trigger_node_type(trigger_type: str) -> str:
    """Map an automation trigger type to its trigger node type."""

    if trigger_type not in TRIGGER_TYPES:
        raise ValueError(f"Unknown trigger type '{trigger_type}'.")
    return f"trigger-{trigger_type}"


__all__ = [
    "CONDITION_HANDLES",
    "DEFAULT_NODE_DATA",
    "NODE_TYPES",
    "NodeCategory",
    "NodeType",
    "TRIGGER_TYPES",
    "TriggerType",
    "category_of",
    "default_data",
    "is_trigger",
    "trigger_node_type",
]
