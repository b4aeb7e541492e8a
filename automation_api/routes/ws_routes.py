from __future__ import annotations

"""WebSocket route streaming one editing session's events."""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from automation_api.deps import get_session_streams, get_sessions
from automation_api.schemas import serialize_session

logger = logging.getLogger("automation.routes.ws")

router = APIRouter()


@router.websocket("/ws/automations/{automation_id}")
async def stream_session(
    websocket: WebSocket,
    automation_id: str,
    sessions=Depends(get_sessions),
    streams=Depends(get_session_streams),
) -> None:
    """Send a session snapshot, then save-state and execution events until it closes."""

    await websocket.accept()
    if not sessions.is_open(automation_id):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="No open session")
        return
    session = sessions.get(automation_id)

    async with streams.stream(session) as events:
        try:
            snapshot = serialize_session(session).model_dump(mode="json", by_alias=True)
            await websocket.send_json({"type": "session", "session": snapshot})
            async for event in events:
                await websocket.send_json(event)
        except WebSocketDisconnect:
            logger.info("Watcher of %s disconnected", automation_id)
            return
    await websocket.close()
