"""Tests for the task lifecycle state machine and the event bus"""

import pytest

from taskgraph.agent.events import EventBus, EventType
from taskgraph.agent.state_machine import TRANSITIONS, AgentState, StateMachine, Trigger
from taskgraph.errors import InvalidTransitionError


class TestStateMachine:
    def test_happy_path(self):
        sm = StateMachine()
        for trigger in (Trigger.START, Trigger.PLAN_READY, Trigger.CONFIRMATION_REQUESTED,
                        Trigger.CONFIRMED, Trigger.COMPLETE, Trigger.RESET):
            sm.dispatch(trigger)
        assert sm.state == AgentState.IDLE
        assert [e.to_state for e in sm.history] == [
            AgentState.PLANNING, AgentState.EXECUTING, AgentState.WAITING,
            AgentState.EXECUTING, AgentState.COMPLETE, AgentState.IDLE,
        ]

    def test_invalid_trigger_leaves_state(self):
        sm = StateMachine()
        with pytest.raises(InvalidTransitionError) as exc:
            sm.dispatch(Trigger.COMPLETE)
        assert exc.value.state == "idle"
        assert exc.value.trigger == "complete"
        assert sm.state == AgentState.IDLE
        assert sm.history == []

    @pytest.mark.parametrize("state", [AgentState.PLANNING, AgentState.EXECUTING, AgentState.WAITING])
    def test_cancel_from_every_busy_state(self, state):
        sm = StateMachine(initial=state)
        sm.dispatch(Trigger.CANCEL, {"error": "stop"})
        assert sm.state == AgentState.ERROR
        assert sm.history[-1].data == {"error": "stop"}

    def test_idle_only_reachable_by_reset(self):
        into_idle = [trigger for (_, trigger), target in TRANSITIONS.items() if target == AgentState.IDLE]
        assert set(into_idle) == {Trigger.RESET}

    def test_available_triggers(self):
        sm = StateMachine(initial=AgentState.WAITING)
        assert set(sm.available_triggers()) == {Trigger.CONFIRMED, Trigger.REJECTED, Trigger.CANCEL}
        assert sm.can_dispatch(Trigger.CONFIRMED)
        assert not sm.can_dispatch(Trigger.START)

    def test_history_serializes(self):
        sm = StateMachine()
        sm.dispatch(Trigger.START, {"task_id": "t1"})
        entry = sm.to_dict()["history"][0]
        assert entry["from"] == "idle" and entry["to"] == "planning"
        assert entry["trigger"] == "start"
        assert entry["data"] == {"task_id": "t1"}


class TestEventBus:
    @pytest.mark.asyncio
    async def test_handlers_run_in_order(self):
        bus = EventBus()
        seen = []

        async def first(event):
            seen.append(("first", event.data["n"]))

        bus.subscribe(EventType.STEP_STARTED, first)
        bus.subscribe(EventType.STEP_STARTED, lambda e: seen.append(("second", e.data["n"])))
        bus.subscribe_all(lambda e: seen.append(("all", e.type.value)))

        event = await bus.publish(EventType.STEP_STARTED, {"n": 1})
        await bus.publish(EventType.STEP_COMPLETED, {"n": 2})

        assert event.type == EventType.STEP_STARTED
        assert seen == [("first", 1), ("second", 1), ("all", "step:started"), ("all", "step:completed")]

    @pytest.mark.asyncio
    async def test_wildcard_and_typed_handlers_share_one_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(lambda e: seen.append("all"))
        bus.subscribe(EventType.STEP_STARTED, lambda e: seen.append("typed"))
        bus.subscribe_all(lambda e: seen.append("all-late"))

        await bus.publish(EventType.STEP_STARTED)
        assert seen == ["all", "typed", "all-late"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(EventType.TASK_FAILED, broken)
        bus.subscribe(EventType.TASK_FAILED, lambda e: seen.append(e.type))
        await bus.publish(EventType.TASK_FAILED)
        assert seen == [EventType.TASK_FAILED]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        handler = seen.append
        bus.subscribe(EventType.TRANSITION, handler)
        bus.unsubscribe(handler, EventType.TRANSITION)
        await bus.publish(EventType.TRANSITION)
        assert seen == []
