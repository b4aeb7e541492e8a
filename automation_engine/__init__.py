"""Automation flow engine: graph editing, history, autosave, status and runs."""

from automation_engine.autosave import AutosaveCoordinator, SaveError, SaveState
from automation_engine.collaborators import AutomationNotFound, InMemoryAutomationStore
from automation_engine.dispatcher import (
    ExecutionBlocked,
    ExecutionDispatcher,
    ExecutionFailure,
    PendingConfirmation,
)
from automation_engine.executions import ExecutionHistory, ExecutionRecord, ExecutionRequest
from automation_engine.graph import GraphError, GraphModel, InvalidReference
from automation_engine.history import HistoryStack
from automation_engine.models import Automation, Edge, Graph, Node, Viewport
from automation_engine.runner import LocalExecutionBackend
from automation_engine.session import EditorSession, SessionManager
from automation_engine.status import PublishBlocked, StatusMachine

__all__ = [
    "Automation",
    "AutomationNotFound",
    "AutosaveCoordinator",
    "Edge",
    "EditorSession",
    "ExecutionBlocked",
    "ExecutionDispatcher",
    "ExecutionFailure",
    "ExecutionHistory",
    "ExecutionRecord",
    "ExecutionRequest",
    "Graph",
    "GraphError",
    "GraphModel",
    "HistoryStack",
    "InMemoryAutomationStore",
    "InvalidReference",
    "LocalExecutionBackend",
    "Node",
    "PendingConfirmation",
    "PublishBlocked",
    "SaveError",
    "SaveState",
    "SessionManager",
    "StatusMachine",
    "Viewport",
]
