"""Tests for dependency-aware plan execution"""

import asyncio

import pytest

from taskgraph.agent.events import EventBus, EventType
from taskgraph.agent.executor import Executor
from taskgraph.agent.plan import StepResult, StepStatus
from taskgraph.agent.tool_registry import FunctionTool, ToolParameter, ToolRegistry
from taskgraph.config import ExecutorConfig

from tests.conftest import CountingTool, make_plan


def _executor(*tools, events=None, **config):
    settings = {"max_concurrency": 4, "default_timeout": 1.0, "max_retries": 3, "retry_delay": 0.0, **config}
    return Executor(ToolRegistry(list(tools)), ExecutorConfig(**settings), events)


def _by_id(results):
    return {r.step_id: r for r in results}


# ---------------------------------------------------------------------------
# Ordering and concurrency
# ---------------------------------------------------------------------------


class TestScheduling:
    @pytest.mark.asyncio
    async def test_results_in_plan_order(self, echo):
        plan = make_plan([
            {"id": "b", "tool": "echo", "params": {"value": 2}},
            {"id": "a", "tool": "echo", "params": {"value": 1}},
        ])
        results = await _executor(echo).execute(plan)
        assert [r.step_id for r in results] == ["b", "a"]
        assert [r.output for r in results] == [2, 1]
        assert all(r.status == StepStatus.SUCCEEDED for r in results)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        slow = CountingTool("slow", delay=0.05)
        plan = make_plan([{"id": f"s{i}", "tool": "slow"} for i in range(5)])
        results = await _executor(slow, max_concurrency=2).execute(plan)
        assert slow.peak == 2
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_independent_steps_overlap(self):
        slow = CountingTool("slow", delay=0.05)
        plan = make_plan([{"id": "a", "tool": "slow"}, {"id": "b", "tool": "slow"}])
        await _executor(slow).execute(plan)
        assert slow.peak == 2

    @pytest.mark.asyncio
    async def test_dependencies_finish_before_dependents_start(self):
        bus = EventBus()
        log = []
        bus.subscribe(EventType.STEP_STARTED, lambda e: log.append(("start", e.data["step_id"])))
        bus.subscribe(EventType.STEP_COMPLETED, lambda e: log.append(("done", e.data["step_id"])))

        slow = CountingTool("slow", delay=0.02)
        plan = make_plan([
            {"id": "a", "tool": "slow"},
            {"id": "b", "tool": "slow"},
            {"id": "c", "tool": "slow", "depends_on": ["a", "b"]},
            {"id": "d", "tool": "slow", "depends_on": ["c"]},
        ])
        await _executor(slow, events=bus).execute(plan)

        for step in plan.steps:
            started = log.index(("start", step.id))
            for dep in step.depends_on:
                assert log.index(("done", dep)) < started

    @pytest.mark.asyncio
    async def test_outputs_flow_through_references(self):
        fetch = CountingTool("fetch", result={"items": [{"name": "first"}], "body": "hello"})
        echo = CountingTool("echo")
        plan = make_plan([
            {"id": "fetch", "tool": "fetch"},
            {"id": "use", "tool": "echo", "params": {"value": {"$ref": "fetch.output.items[0]"}}},
            {"id": "say", "tool": "echo", "params": {"value": "{{context.greeting}}, {{fetch.body}}"}},
        ])
        results = _by_id(await _executor(fetch, echo).execute(plan, context={"greeting": "hi"}))
        assert results["use"].output == {"name": "first"}
        assert results["say"].output == "hi, hello"


# ---------------------------------------------------------------------------
# Failures, retries and timeouts
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_step_retried_until_it_succeeds(self):
        bus = EventBus()
        retries = []
        bus.subscribe(EventType.STEP_RETRY, lambda e: retries.append(e.data["attempt"]))

        flaky = CountingTool("flaky", failures=2)
        result = (await _executor(flaky, events=bus).execute(make_plan([{"id": "a", "tool": "flaky"}])))[0]

        assert result.status == StepStatus.SUCCEEDED
        assert result.retries == 2
        assert flaky.calls == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_attempts_are_max_retries_plus_one(self):
        broken = CountingTool("broken", failures=100)
        plan = make_plan([{"id": "a", "tool": "broken", "max_retries": 2}])
        result = (await _executor(broken, max_retries=5).execute(plan))[0]

        assert broken.calls == 3
        assert result.status == StepStatus.FAILED
        assert result.retries == 2
        assert result.error_type == "StepExecutionError"
        assert "broken failure #3" in result.error

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        slow = CountingTool("slow", delay=1.0)
        plan = make_plan([{"id": "a", "tool": "slow", "timeout": 0.02, "max_retries": 1}])
        result = (await _executor(slow).execute(plan))[0]

        assert result.status == StepStatus.FAILED
        assert result.error_type == "StepTimeoutError"
        assert slow.calls == 2
        assert slow.active == 0

    @pytest.mark.asyncio
    async def test_invalid_arguments_not_retried(self):
        strict = FunctionTool(
            "strict", "Needs n", lambda n: n,
            parameters=[ToolParameter(name="n", type="integer", description="n")],
        )
        result = (await _executor(strict).execute(make_plan([{"id": "a", "tool": "strict", "params": {"n": "x"}}])))[0]
        assert result.status == StepStatus.FAILED
        assert result.retries == 0

    @pytest.mark.asyncio
    async def test_unresolved_reference_fails_without_calling_tool(self):
        source = CountingTool("source", result={"a": 1})
        sink = CountingTool("sink")
        plan = make_plan([
            {"id": "s", "tool": "source"},
            {"id": "t", "tool": "sink", "params": {"value": "{{s.output.missing}}"}},
        ])
        results = _by_id(await _executor(source, sink).execute(plan))

        assert results["t"].status == StepStatus.FAILED
        assert results["t"].error_type == "UnresolvedReferenceError"
        assert sink.calls == 0

    @pytest.mark.asyncio
    async def test_failure_skips_dependents_only(self):
        broken = CountingTool("broken", failures=100)
        echo = CountingTool("echo")
        plan = make_plan([
            {"id": "a", "tool": "broken", "max_retries": 0},
            {"id": "b", "tool": "echo", "depends_on": ["a"]},
            {"id": "c", "tool": "echo", "depends_on": ["b"]},
            {"id": "d", "tool": "echo"},
        ])
        results = _by_id(await _executor(broken, echo).execute(plan))

        assert results["a"].status == StepStatus.FAILED
        assert results["b"].status == StepStatus.SKIPPED
        assert results["c"].status == StepStatus.SKIPPED
        assert "did not succeed" in results["b"].error
        assert results["d"].status == StepStatus.SUCCEEDED
        assert echo.calls == 1


# ---------------------------------------------------------------------------
# Confirmation points
# ---------------------------------------------------------------------------


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_rejection_skips_step_and_dependents(self, echo):
        plan = make_plan(
            [
                {"id": "a", "tool": "echo"},
                {"id": "b", "tool": "echo", "depends_on": ["a"]},
                {"id": "c", "tool": "echo", "depends_on": ["b"]},
            ],
            confirmation_points={"b": "Continue?"},
        )
        questions = []

        async def reject(step, question):
            questions.append((step.id, question))
            return False

        results = _by_id(await _executor(echo).execute(plan, on_confirmation=reject))
        assert questions == [("b", "Continue?")]
        assert results["a"].status == StepStatus.SUCCEEDED
        assert results["b"].status == StepStatus.SKIPPED
        assert results["b"].error == "Rejected at confirmation point"
        assert results["c"].status == StepStatus.SKIPPED
        assert echo.calls == 1

    @pytest.mark.asyncio
    async def test_dispatch_is_held_while_waiting(self, echo):
        plan = make_plan(
            [{"id": "gated", "tool": "echo"}, {"id": "free", "tool": "echo"}],
            confirmation_points={"gated": "Go?"},
        )
        calls_while_waiting = []

        async def approve(step, question):
            await asyncio.sleep(0.02)
            calls_while_waiting.append(echo.calls)
            return True

        results = await _executor(echo).execute(plan, on_confirmation=approve)
        assert calls_while_waiting == [0]
        assert all(r.status == StepStatus.SUCCEEDED for r in results)

    @pytest.mark.asyncio
    async def test_auto_approved_without_handler(self, echo):
        plan = make_plan([{"id": "a", "tool": "echo"}], confirmation_points={"a": "Go?"})
        results = await _executor(echo).execute(plan)
        assert results[0].status == StepStatus.SUCCEEDED


# ---------------------------------------------------------------------------
# Cancellation and resume
# ---------------------------------------------------------------------------


class TestCancelAndResume:
    @pytest.mark.asyncio
    async def test_cancel_stops_running_and_pending(self):
        slow = CountingTool("slow", delay=5)
        echo = CountingTool("echo")
        plan = make_plan([
            {"id": "a", "tool": "slow"},
            {"id": "b", "tool": "echo", "depends_on": ["a"]},
        ])
        cancel = asyncio.Event()
        run = asyncio.ensure_future(_executor(slow, echo).execute(plan, cancel_event=cancel))
        await asyncio.sleep(0.02)
        cancel.set()
        results = _by_id(await asyncio.wait_for(run, 1.0))

        assert results["a"].status == StepStatus.CANCELLED
        assert results["b"].status == StepStatus.SKIPPED
        assert echo.calls == 0

    @pytest.mark.asyncio
    async def test_prior_results_are_not_rerun(self):
        first = CountingTool("first")
        second = CountingTool("second")
        plan = make_plan([
            {"id": "a", "tool": "first"},
            {"id": "b", "tool": "second", "params": {"value": "{{a.output}}!"}},
        ])
        prior = [
            StepResult(step_id="a", step_name="a", status=StepStatus.SUCCEEDED, output="cached"),
            StepResult(step_id="b", step_name="b", status=StepStatus.FAILED, error="boom"),
        ]
        results = _by_id(await _executor(first, second).execute(plan, prior_results=prior))

        assert first.calls == 0
        assert results["a"].output == "cached"
        assert results["b"].status == StepStatus.SUCCEEDED
        assert results["b"].output == "cached!"


def test_statistics():
    results = [
        StepResult(step_id="a", step_name="a", status=StepStatus.SUCCEEDED),
        StepResult(step_id="b", step_name="b", status=StepStatus.SKIPPED),
        StepResult(step_id="c", step_name="c", status=StepStatus.SKIPPED),
    ]
    stats = Executor.statistics(results)
    assert stats["total"] == 3
    assert stats["succeeded"] == 1
    assert stats["skipped"] == 2
    assert stats["failed"] == 0
    assert stats["average_duration_ms"] == 0
