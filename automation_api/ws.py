from __future__ import annotations

"""Relay of editing-session events to WebSocket subscribers."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from automation_engine.session import EditorSession, SessionEvent

logger = logging.getLogger("automation.ws")


class SessionRelay:
    """Listens to one :class:`EditorSession` while anyone is watching it.

    The relay subscribes to the session on the first watcher and detaches
    when the last watcher leaves or the session emits ``closed``. Events
    are emitted on the session's loop, so queues are fed directly.
    """

    def __init__(self, session: EditorSession) -> None:
        self.session = session
        self._queues: List[asyncio.Queue[SessionEvent]] = []
        self._attached = False

    @property
    def watchers(self) -> int:
        return len(self._queues)

    @property
    def attached(self) -> bool:
        return self._attached

    def watch(self) -> asyncio.Queue[SessionEvent]:
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._queues.append(queue)
        if self.session.closed:
            queue.put_nowait({"type": "closed", "reason": "closed"})
        elif not self._attached:
            self.session.subscribe(self._relay)
            self._attached = True
        return queue

    def release(self, queue: asyncio.Queue[SessionEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
        if not self._queues:
            self._detach()

    def _relay(self, event: SessionEvent) -> None:
        for queue in list(self._queues):
            queue.put_nowait(event)
        if event.get("type") == "closed":
            self._detach()

    def _detach(self) -> None:
        if self._attached:
            self.session.unsubscribe(self._relay)
            self._attached = False


async def _drain(queue: asyncio.Queue[SessionEvent]) -> AsyncIterator[SessionEvent]:
    while True:
        event = await queue.get()
        yield event
        if event.get("type") == "closed":
            return


class SessionStreams:
    """One :class:`SessionRelay` per automation that has live watchers."""

    def __init__(self) -> None:
        self._relays: Dict[str, SessionRelay] = {}

    def relay_for(self, session: EditorSession) -> SessionRelay:
        relay = self._relays.get(session.automation_id)
        if relay is None or relay.session is not session:
            relay = SessionRelay(session)
            self._relays[session.automation_id] = relay
        return relay

    def watchers(self, automation_id: str) -> int:
        relay = self._relays.get(automation_id)
        return relay.watchers if relay is not None else 0

    @asynccontextmanager
    async def stream(self, session: EditorSession) -> AsyncIterator[AsyncIterator[SessionEvent]]:
        """Yield the session's events until it closes or the caller leaves."""

        relay = self.relay_for(session)
        queue = relay.watch()
        logger.info("Streaming %s to %d watcher(s)", session.automation_id, relay.watchers)
        try:
            yield _drain(queue)
        finally:
            relay.release(queue)
            if not relay.watchers and self._relays.get(session.automation_id) is relay:
                del self._relays[session.automation_id]


__all__ = ["SessionRelay", "SessionStreams"]
