from __future__ import annotations

"""Completeness checks run before an automation may be published."""

from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

from automation_engine.models import Graph, Node

Severity = Literal["error", "warning"]


class ValidationRule(BaseModel):
    field: str
    message: str
    required: bool = False
    min_length: Optional[int] = None
    severity: Severity = "error"


class ValidationIssue(BaseModel):
    node_id: str
    node_label: str
    field: str
    message: str
    severity: Severity = "error"


class ValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    def summary(self) -> str:
        """Human readable one-liner, e.g. ``"2 errors, 1 warning"``."""

        if self.valid and not self.warnings:
            return "All nodes configured correctly"
        parts = []
        for count, noun in ((len(self.errors), "error"), (len(self.warnings), "warning")):
            if count:
                parts.append(f"{count} {noun}{'' if count == 1 else 's'}")
        return ", ".join(parts)


def _rule(field: str, message: str, **kwargs: Any) -> ValidationRule:
    return ValidationRule(field=field, message=message, **kwargs)


# trigger-manual and logic-stop have no required fields.
NODE_VALIDATION_RULES: Dict[str, List[ValidationRule]] = {
    "trigger-event": [_rule("event", "Select an event to trigger on", required=True)],
    "trigger-schedule": [
        _rule("cronExpression", "Set a schedule (cron expression)", required=True),
    ],
    "trigger-ai-tool": [
        _rule("toolName", "Enter a tool name", required=True),
        _rule("toolDescription", "Describe what this tool does", required=True),
    ],
    "action-email": [
        _rule("to", "Select a recipient", required=True),
        _rule("subject", "Enter an email subject", required=True),
        _rule("body", "Enter email content", required=True),
    ],
    "action-http": [
        _rule("url", "Enter a URL", required=True),
        _rule("method", "Select an HTTP method", required=True),
    ],
    "action-update-lead": [
        _rule("fields", "Add at least one field to update", required=True, min_length=1),
    ],
    "logic-condition": [
        _rule("condition.field", "Select a field to check", required=True),
        _rule("condition.operator", "Select a condition operator", required=True),
    ],
    "logic-delay": [_rule("delayMs", "Set a delay duration", required=True)],
    "ai-generate": [
        _rule("prompt", "Enter a prompt", required=True),
        _rule("outputVariable", "Name the output variable", required=True),
    ],
    "ai-classify": [
        _rule("input", "Select what to classify", required=True),
        _rule("categories", "Add at least 2 categories", min_length=2),
        _rule("outputVariable", "Name the output variable", required=True),
    ],
    "ai-extract": [
        _rule("input", "Select what to extract from", required=True),
        _rule("fields", "Add at least one field to extract", min_length=1),
        _rule("outputVariable", "Name the output variable", required=True),
    ],
}


def get_nested(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted ``path`` such as ``"condition.field"``."""

    current: Any = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple)) and not value:
        return True
    return False


def validate_node(node: Node) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for rule in NODE_VALIDATION_RULES.get(node.type, []):
        value = get_nested(node.data, rule.field)
        missing = rule.required and is_empty(value)
        too_short = (
            rule.min_length is not None
            and (value is None or (isinstance(value, (list, tuple)) and len(value) < rule.min_length))
        )
        if missing or too_short:
            issues.append(
                ValidationIssue(
                    node_id=node.id,
                    node_label=node.label,
                    field=rule.field,
                    message=rule.message,
                    severity=rule.severity,
                )
            )
    return issues


def validate_nodes(nodes: Iterable[Node]) -> ValidationResult:
    issues = [issue for node in nodes for issue in validate_node(node)]
    errors = [issue for issue in issues if issue.severity == "error"]
    warnings = [issue for issue in issues if issue.severity == "warning"]
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_graph(graph: Graph) -> ValidationResult:
    """Validate every node of ``graph``. Edges carry no rules."""

    return validate_nodes(graph.nodes)


__all__ = [
    "NODE_VALIDATION_RULES",
    "ValidationIssue",
    "ValidationResult",
    "ValidationRule",
    "get_nested",
    "is_empty",
    "validate_graph",
    "validate_node",
]
