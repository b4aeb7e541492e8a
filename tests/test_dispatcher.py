from __future__ import annotations

"""Tests for test/live run dispatch and failure escalation."""

import asyncio

import pytest

from automation_engine.dispatcher import (
    ExecutionBlocked,
    ExecutionDispatcher,
    PendingConfirmation,
    sample_trigger_data,
)
from automation_engine.executions import ExecutionHistory
from automation_engine.models import Automation, AutomationDraft
from automation_engine.status import StatusMachine


class Harness:
    def __init__(self, store, backend, automation: Automation) -> None:
        self.store = store
        self.backend = backend
        self.automation = automation
        self.dirty = False
        self.status = StatusMachine(automation.id, store, status=automation.status)
        self.history = ExecutionHistory()
        self.events = []
        self.history.subscribe(lambda record: self.events.append(record.outcome))
        self.dispatcher = ExecutionDispatcher(
            lambda: self.automation,
            backend,
            self.status,
            self.history,
            is_dirty=lambda: self.dirty,
        )


async def harness(store, backend, *, status: str = "active", **config) -> Harness:
    automation = await store.create_automation(
        AutomationDraft(name="Manual", trigger_type="manual", trigger_config=config)
    )
    automation = await store.update_automation(
        automation.id, {"status": status, "enabled": status == "active"}
    )
    store.updates.clear()
    return Harness(store, backend, automation)


def test_test_run_records_success(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, status="draft")

        record = await h.dispatcher.trigger_test({"lead": {"id": "1"}})

        assert record.outcome == "success" and record.test_mode
        assert backend.requests[0].test_mode is True
        assert backend.requests[0].trigger_data == {"lead": {"id": "1"}}
        assert h.events == ["running", "success"]
        assert h.history.latest() is record

    asyncio.run(scenario())


def test_test_run_uses_sample_data_when_none_given(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, status="draft")
        await h.dispatcher.trigger_test()
        assert backend.requests[0].trigger_data["event"] == "manual.triggered"

    asyncio.run(scenario())


def test_dirty_editor_blocks_test_runs(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, status="draft")
        h.dirty = True

        with pytest.raises(ExecutionBlocked):
            await h.dispatcher.trigger_test()

        assert backend.requests == []
        assert len(h.history) == 0

    asyncio.run(scenario())


def test_failed_test_run_does_not_touch_status(store, backend) -> None:
    backend.success = False

    async def scenario() -> None:
        h = await harness(store, backend)

        record = await h.dispatcher.trigger_test({})

        assert record.outcome == "failure"
        assert record.error == "node exploded" and record.error_node_id == "B"
        assert h.status.status == "active"
        assert store.updates == []

    asyncio.run(scenario())


def test_failed_live_run_moves_automation_to_error(store, backend) -> None:
    backend.raises = ConnectionError("backend down")

    async def scenario() -> None:
        h = await harness(store, backend)

        record = await h.dispatcher.trigger_live()

        assert record.outcome == "failure"
        assert "backend down" in record.error
        assert h.status.status == "error"
        assert store.updates[-1] == {"status": "error", "enabled": False}

    asyncio.run(scenario())


def test_reported_live_failure_moves_automation_to_error(store, backend) -> None:
    backend.success = False

    async def scenario() -> None:
        h = await harness(store, backend)

        record = await h.dispatcher.trigger_live({})

        assert record.outcome == "failure"
        assert record.error_node_id == "B"
        assert h.status.status == "error"

    asyncio.run(scenario())


def test_live_runs_need_an_active_manual_automation(store, backend) -> None:
    async def scenario() -> None:
        paused = await harness(store, backend, status="paused")
        with pytest.raises(ExecutionBlocked):
            await paused.dispatcher.trigger_live()

        event = await store.create_automation(AutomationDraft(name="Event", trigger_type="event"))
        event = await store.update_automation(event.id, {"status": "active", "enabled": True})
        h = Harness(store, backend, event)
        with pytest.raises(ExecutionBlocked):
            await h.dispatcher.trigger_live()

        assert backend.requests == []

    asyncio.run(scenario())


def test_confirmation_defers_live_run(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, buttonLabel="Send now", requireConfirmation=True)

        pending = await h.dispatcher.trigger_live({"note": "hi"})

        assert isinstance(pending, PendingConfirmation)
        assert pending.button_label == "Send now"
        assert len(h.history) == 0 and backend.requests == []

        record = await h.dispatcher.confirm(pending.token)

        assert record.outcome == "success" and not record.test_mode
        assert backend.requests[0].trigger_data == {"note": "hi"}
        with pytest.raises(ExecutionBlocked):
            await h.dispatcher.confirm(pending.token)

    asyncio.run(scenario())


def test_cancelled_confirmation_never_runs(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, requireConfirmation=True)
        pending = await h.dispatcher.trigger_live()

        assert h.dispatcher.cancel_confirmation(pending.token)
        with pytest.raises(ExecutionBlocked):
            await h.dispatcher.confirm(pending.token)
        assert backend.requests == []

    asyncio.run(scenario())


def test_concurrent_test_runs_are_tracked_separately(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, status="draft")
        backend.gate = asyncio.Event()

        first = await h.dispatcher.trigger_test({}, wait=False)
        second = await h.dispatcher.trigger_test({}, wait=False)

        assert h.dispatcher.running
        assert [record.id for record in h.history.running()] == [second.id, first.id]

        backend.gate.set()
        await h.dispatcher.wait_all()

        assert first.outcome == second.outcome == "success"
        assert not h.dispatcher.running

    asyncio.run(scenario())


def test_results_after_close_are_discarded(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend, status="draft")
        backend.gate = asyncio.Event()

        record = await h.dispatcher.trigger_test({}, wait=False)
        h.dispatcher.close()
        backend.gate.set()
        await h.dispatcher.wait_all()

        assert record.outcome == "running"
        with pytest.raises(ExecutionBlocked):
            await h.dispatcher.trigger_test({})

    asyncio.run(scenario())


class TestSampleTriggerData:
    def automation(self, trigger_type: str, **config) -> Automation:
        return Automation(id="a", name="n", trigger_type=trigger_type, trigger_config=config)

    def test_lead_event(self) -> None:
        data = sample_trigger_data(self.automation("event", event="lead.updated"))
        assert data["event"] == "lead.updated"
        assert data["lead"]["email"] == "test@example.com"

    def test_message_event(self) -> None:
        data = sample_trigger_data(self.automation("event", event="message.received"))
        assert data["message"]["role"] == "user"

    def test_schedule(self) -> None:
        assert sample_trigger_data(self.automation("schedule"))["event"] == "schedule.triggered"

    def test_ai_tool(self) -> None:
        assert sample_trigger_data(self.automation("ai-tool")) == {}


def test_unconfigured_nodes_block_test_and_live_runs(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend)
        h.automation = await store.update_automation(
            h.automation.id,
            {"nodes": h.automation.model_dump()["nodes"] + [{"id": "mail", "type": "action-email"}]},
        )

        with pytest.raises(ExecutionBlocked, match="Fix configuration issues first"):
            await h.dispatcher.trigger_test({})
        with pytest.raises(ExecutionBlocked, match="3 errors"):
            await h.dispatcher.trigger_live()

        assert backend.requests == []
        assert len(h.history) == 0

    asyncio.run(scenario())


def test_dirty_editor_blocks_live_runs(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend)
        h.dirty = True
        with pytest.raises(ExecutionBlocked, match="Save your changes"):
            await h.dispatcher.trigger_live()
        assert backend.requests == []

    asyncio.run(scenario())


def test_one_live_run_at_a_time(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend)
        backend.gate = asyncio.Event()

        first = await h.dispatcher.trigger_live(wait=False)
        with pytest.raises(ExecutionBlocked, match="already in progress"):
            await h.dispatcher.trigger_live()
        test_run = await h.dispatcher.trigger_test({}, wait=False)

        backend.gate.set()
        await h.dispatcher.wait_all()
        assert first.outcome == test_run.outcome == "success"
        assert len(backend.requests) == 2

    asyncio.run(scenario())


def test_invalid_stored_trigger_config_blocks_live_run(store, backend) -> None:
    async def scenario() -> None:
        h = await harness(store, backend)
        h.automation = h.automation.model_copy(update={"trigger_config": {"requireConfirmation": "maybe"}})

        with pytest.raises(ExecutionBlocked, match="Invalid trigger configuration"):
            await h.dispatcher.trigger_live()

    asyncio.run(scenario())
