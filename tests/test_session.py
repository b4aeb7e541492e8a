from __future__ import annotations

"""End-to-end tests of an editing session over the in-memory collaborators."""

import asyncio

import pytest

from automation_engine.graph import MoveNode, RemoveNode
from automation_engine.models import AutomationDraft, Position
from automation_engine.registry import PanelRegistry
from automation_engine.runner import LocalExecutionBackend, builtin_handlers
from automation_engine.session import EditorSession, SessionClosed, SessionManager
from automation_engine.status import PublishBlocked
from automation_engine.dispatcher import ExecutionBlocked


async def open_session(store, backend, settings, **kwargs) -> EditorSession:
    automation = await store.create_automation(AutomationDraft(name="Welcome flow"))
    return await EditorSession.open(automation.id, store, backend, settings=settings, **kwargs)


def test_new_automation_opens_with_trigger_node(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)

        graph = session.current_graph()
        assert [(node.id, node.type) for node in graph.nodes] == [("trigger-1", "trigger-manual")]
        assert graph.nodes[0].position == Position(x=250, y=50)
        assert session.status.status == "draft"
        assert not session.can_undo()
        assert session.save_state.indicator() == "No changes"
        session.close()

    asyncio.run(scenario())


def test_edits_autosave_and_reopen_identically(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        delay = session.add_node("logic-delay", Position(x=250, y=200))
        assert session.connect("trigger-1", delay) is not None
        session.apply(MoveNode(node_id=delay, position=Position(x=300, y=220)))

        await asyncio.sleep(settings.autosave_debounce_seconds * 4)
        await session.autosave.wait_idle()

        assert len(store.graph_saves) == 1
        assert not session.save_state.is_dirty
        edited = session.current_graph()
        session.close()

        reopened = await EditorSession.open(session.automation_id, store, backend, settings=settings)
        assert reopened.current_graph().model_dump() == edited.model_dump()
        reopened.close()

    asyncio.run(scenario())


def test_rejected_mutation_reports_without_raising(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)

        result = session.apply(RemoveNode(node_id="ghost"))

        assert not result.applied and "ghost" in result.error
        assert not session.save_state.is_dirty
        assert session.connect("trigger-1", "ghost") is None
        session.close()

    asyncio.run(scenario())


def test_configure_node_goes_through_panel(store, backend, settings) -> None:
    async def scenario() -> None:
        panels = PanelRegistry()
        panels.register("action-email", lambda node_id, data, changes: {**data, **changes, "to": changes["to"].lower()})
        session = await open_session(store, backend, settings, panels=panels)
        email = session.add_node("action-email", Position(x=0, y=200))

        session.configure_node(email, {"to": "Sales@Example.com"})

        node = session.current_graph().get_node(email)
        assert node.data == {"label": "Send Email", "to": "sales@example.com"}
        assert session.undo().get_node(email).data == {"label": "Send Email"}
        session.close()

    asyncio.run(scenario())


def test_publish_requires_save_then_valid_graph(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        email = session.add_node("action-email", Position(x=250, y=200))
        session.connect("trigger-1", email)

        with pytest.raises(PublishBlocked) as excinfo:
            await session.set_status("active")
        assert len(excinfo.value.reasons) == 2
        assert session.status.status == "draft"

        await session.save()
        with pytest.raises(PublishBlocked):
            await session.set_status("active")

        session.configure_node(email, {"to": "a@b.c", "subject": "Hi", "body": "Hello"})
        await session.save()
        assert await session.set_status("active") == "active"
        assert (await store.get_automation(session.automation_id)).enabled
        session.close()

    asyncio.run(scenario())


def test_test_run_blocked_until_saved(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        session.add_node("logic-stop", Position(x=250, y=200))

        with pytest.raises(ExecutionBlocked):
            await session.trigger_test()

        await session.save()
        record = await session.trigger_test({"lead": {"id": "l1"}})
        assert record.outcome == "success"
        assert session.executions.latest() is record
        session.close()

    asyncio.run(scenario())


def test_live_run_with_local_backend_updates_counters(store, settings) -> None:
    async def scenario() -> None:
        backend = LocalExecutionBackend(store, handlers=builtin_handlers(settings.max_delay_seconds))
        session = await open_session(store, backend, settings)
        stop = session.add_node("logic-stop", Position(x=250, y=200))
        session.connect("trigger-1", stop)
        await session.save()
        await session.set_status("active")

        record = await session.trigger_live({"reason": "demo"})

        assert record.outcome == "success"
        assert [run.node_id for run in record.nodes_executed] == ["trigger-1", stop]
        automation = await store.get_automation(session.automation_id)
        assert automation.execution_count == 1
        session.close()

        reopened = await EditorSession.open(session.automation_id, store, backend, settings=settings)
        assert [r.id for r in reopened.executions.records()] == [record.id]
        reopened.close()

    asyncio.run(scenario())


def test_metadata_edits_are_saved_and_validated(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)

        session.update_metadata(name="Renamed", trigger_config={"buttonLabel": "Go"})
        with pytest.raises(ValueError):
            session.update_metadata(status="active")
        await session.save()

        stored = await store.get_automation(session.automation_id)
        assert stored.name == "Renamed"
        assert stored.trigger_config == {"buttonLabel": "Go"}
        assert session.automation_snapshot().name == "Renamed"
        session.close()

    asyncio.run(scenario())


def test_events_are_emitted_to_subscribers(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        events = []
        session.subscribe(events.append)

        session.add_node("logic-stop")
        await session.save()
        await session.trigger_test({})

        kinds = [event["type"] for event in events]
        assert "save_state" in kinds
        assert kinds.count("execution") == 2
        session.close()

    asyncio.run(scenario())


def test_closed_session_rejects_operations(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)
        session.add_node("logic-stop")
        session.close()

        await asyncio.sleep(settings.autosave_debounce_seconds * 4)
        assert store.graph_saves == []
        with pytest.raises(SessionClosed):
            session.undo()
        with pytest.raises(SessionClosed):
            await session.save()

    asyncio.run(scenario())


def test_sessions_are_isolated(store, backend, settings) -> None:
    async def scenario() -> None:
        first = await open_session(store, backend, settings)
        second = await open_session(store, backend, settings)

        first.add_node("logic-stop")

        assert first.can_undo() and not second.can_undo()
        assert first.save_state.is_dirty and not second.save_state.is_dirty
        first.close()
        second.close()

    asyncio.run(scenario())


class TestSessionManager:
    def test_open_is_idempotent_and_close_tears_down(self, store, backend, settings) -> None:
        async def scenario() -> None:
            automation = await store.create_automation(AutomationDraft(name="Managed"))
            manager = SessionManager(store, backend, settings=settings)

            first, second = await asyncio.gather(manager.open(automation.id), manager.open(automation.id))

            assert first is second
            assert manager.get(automation.id) is first
            assert manager.close(automation.id)
            assert first.closed
            assert not manager.is_open(automation.id)
            assert not manager.close(automation.id)
            with pytest.raises(KeyError):
                manager.get(automation.id)

        asyncio.run(scenario())


def test_duplicate_is_a_mutation_but_selection_is_not(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)

        session.select_node("trigger-1")
        session.select_all()
        session.deselect_all()
        assert not session.save_state.is_dirty
        assert not session.can_undo()

        copy = session.duplicate_node("trigger-1")
        assert copy is not None
        assert session.selected_node().id == copy
        assert session.save_state.is_dirty and session.can_undo()
        assert session.duplicate_node("ghost") is None
        session.close()

    asyncio.run(scenario())


def test_trigger_config_must_fit_trigger_type(store, backend, settings) -> None:
    async def scenario() -> None:
        session = await open_session(store, backend, settings)

        with pytest.raises(ValueError):
            session.update_metadata(trigger_config={"requireConfirmation": "maybe"})

        assert not session.save_state.is_dirty
        assert session.automation_snapshot().trigger_config == {}
        session.close()

    asyncio.run(scenario())


def test_draft_rejects_mismatched_trigger_config() -> None:
    with pytest.raises(ValueError):
        AutomationDraft(name="Bad", trigger_type="manual", trigger_config={"requireConfirmation": "maybe"})
    draft = AutomationDraft(name="Cron", trigger_type="schedule", trigger_config={"cronExpression": "0 9 * * *"})
    assert draft.trigger_config["cronExpression"] == "0 9 * * *"
