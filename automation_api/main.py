from __future__ import annotations

"""FastAPI application factory for the automation editor service."""

import logging
from typing import Dict

from fastapi import FastAPI

from automation_api.routes import automation_routes, run_routes, session_routes, ws_routes
from automation_api.ws import SessionStreams
from automation_engine.collaborators import InMemoryAutomationStore
from automation_engine.config import Settings, get_settings
from automation_engine.models import Node
from automation_engine.registry import NodeTypeRegistry
from automation_engine.runner import (
    LocalExecutionBackend,
    NodeHandler,
    NodeOutcome,
    RunContext,
    builtin_handlers,
)
from automation_engine.session import SessionManager

logger = logging.getLogger("automation.app")

SIMULATED_NODE_TYPES = (
    "action-http",
    "action-email",
    "action-update-lead",
    "ai-generate",
    "ai-classify",
    "ai-extract",
)


def configure_logging(level: str = "INFO") -> None:
    """Configure basic logging for the service."""

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _simulated(node: Node, context: RunContext) -> NodeOutcome:
    """Echo the node configuration instead of calling the outside world."""

    output = {"simulated": True, "node_type": node.type, "config": node.data}
    variable = node.data.get("outputVariable") or node.data.get("responseVariable")
    set_variables = {variable: output} if variable else {}
    return NodeOutcome(output=output, set_variables=set_variables)


def _register_simulated_handlers(registry: NodeTypeRegistry[NodeHandler]) -> None:
    """Register stand-in handlers for action and AI nodes."""

    for node_type in SIMULATED_NODE_TYPES:
        if not registry.has(node_type):
            registry.register(node_type, _simulated)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Construct the FastAPI application."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    store = InMemoryAutomationStore()
    handlers = builtin_handlers(settings.max_delay_seconds)
    _register_simulated_handlers(handlers)
    backend = LocalExecutionBackend(
        store,
        handlers=handlers,
        node_timeout=settings.node_timeout_seconds,
    )
    sessions = SessionManager(store, backend, settings=settings)

    app = FastAPI(title="Automation Flow Engine", version="0.1.0")

    app.state.settings = settings
    app.state.store = store
    app.state.backend = backend
    app.state.sessions = sessions
    app.state.streams = SessionStreams()

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info("Automation service starting up.")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        sessions.close_all()
        logger.info("Automation service shutting down.")

    @app.get("/health", tags=["system"])
    async def health() -> Dict[str, str]:
        """Simple health probe."""

        return {"status": "ok"}

    app.include_router(automation_routes.router)
    app.include_router(session_routes.router)
    app.include_router(run_routes.router)
    app.include_router(ws_routes.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("automation_api.main:app", host=settings.host, port=settings.port)


__all__ = [
    "app",
    "configure_logging",
    "create_app",
]
