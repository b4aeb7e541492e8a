from __future__ import annotations

"""Dependency helpers for FastAPI routes."""

from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from automation_engine.session import EditorSession


def get_store(request: HTTPConnection):
    """Return the automation store."""

    return request.app.state.store


def get_sessions(request: HTTPConnection):
    """Return the session manager."""

    return request.app.state.sessions


def get_session_streams(request: HTTPConnection):
    """Return the per-session event streams."""

    return request.app.state.streams


def get_open_session(automation_id: str, request: HTTPConnection) -> EditorSession:
    """Return the open editing session or answer 404."""

    try:
        return request.app.state.sessions.get(automation_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


__all__ = [
    "get_open_session",
    "get_session_streams",
    "get_sessions",
    "get_store",
]
