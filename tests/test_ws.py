from __future__ import annotations

"""Tests of the relay between editing sessions and WebSocket watchers."""

import asyncio

from automation_api.ws import SessionStreams
from automation_engine.models import AutomationDraft, Position
from automation_engine.session import EditorSession


async def open_session(store, backend, settings) -> EditorSession:
    automation = await store.create_automation(AutomationDraft(name="Streamed"))
    return await EditorSession.open(automation.id, store, backend, settings=settings)


def test_stream_forwards_events_until_session_closes(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        streams = SessionStreams()

        async with streams.stream(session) as events:
            relay = streams.relay_for(session)
            assert relay.attached
            assert streams.watchers(session.automation_id) == 1

            session.add_node("logic-stop", Position(x=250, y=200))
            session.close("deleted")

            received = [event async for event in events]
            assert received[0]["type"] == "save_state"
            assert received[0]["state"]["is_dirty"] is True
            assert received[-1] == {"type": "closed", "reason": "deleted"}
            assert not relay.attached

        assert streams.watchers(session.automation_id) == 0
        assert session._listeners == []

    asyncio.run(scenario())


def test_last_watcher_leaving_detaches_from_session(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        streams = SessionStreams()

        async with streams.stream(session):
            async with streams.stream(session):
                assert streams.watchers(session.automation_id) == 2
                assert len(session._listeners) == 1
            assert streams.watchers(session.automation_id) == 1
            assert len(session._listeners) == 1

        assert streams.watchers(session.automation_id) == 0
        assert session._listeners == []
        session.close()

    asyncio.run(scenario())


def test_watching_a_closed_session_ends_at_once(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        session.close()
        streams = SessionStreams()

        async with streams.stream(session) as events:
            received = [event async for event in events]

        assert received == [{"type": "closed", "reason": "closed"}]
        assert not streams.relay_for(session).attached

    asyncio.run(scenario())


def test_reopened_session_gets_a_fresh_relay(store, backend, settings) -> None:
    async def scenario() -> None:
        first = await open_session(store, backend, settings)
        streams = SessionStreams()
        stale = streams.relay_for(first)
        first.close()

        second = await EditorSession.open(first.automation_id, store, backend, settings=settings)
        assert streams.relay_for(second) is not stale
        second.close()

    asyncio.run(scenario())
