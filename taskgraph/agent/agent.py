"""
Agent - Drives one task through planning and execution

Orchestrates: State machine → Plan → Execute steps → Respond

One Agent instance handles one task at a time. Create a new instance
per session; instances share nothing except what they persist.
"""
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import logging
import time
import uuid

from taskgraph.agent.events import EventBus, EventType
from taskgraph.agent.executor import Executor
from taskgraph.agent.plan import ExecutionPlan, PlanStep, StepResult, StepStatus
from taskgraph.agent.planner import Planner
from taskgraph.agent.state_machine import AgentState, StateMachine, Trigger
from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.config import ExecutorConfig, PlannerConfig
from taskgraph.errors import (
    BusyError,
    CancellationError,
    InvalidTransitionError,
    PlanParseError,
    PlanTimeoutError,
    PlanningError,
    StepExecutionError,
)
from taskgraph.llm.base import ModelClient

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Task:
    """The unit of work submitted to an agent"""
    description: str
    context: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: AgentState = AgentState.IDLE
    created_at: datetime = field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class PendingConfirmation:
    step_id: str
    step_name: str
    question: str
    future: asyncio.Future


@dataclass
class AgentResponse:
    """Final result of Agent.process"""
    success: bool
    task_id: str
    state: AgentState
    duration_ms: int
    plan: Optional[ExecutionPlan] = None
    results: List[StepResult] = field(default_factory=list)
    output: Any = None
    summary: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "task_id": self.task_id,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
            "plan": self.plan.to_dict() if self.plan else None,
            "results": [r.to_dict() for r in self.results],
            "output": self.output,
            "summary": self.summary,
            "error": self.error,
            "error_type": self.error_type,
        }


class Agent:
    """
    Usage:
        agent = Agent(model_client, registry)
        response = await agent.process("Fetch the page and summarize it")

    While the task is Waiting, call `await agent.confirm(True)` (or False)
    from another coroutine. `await agent.cancel()` aborts a running task;
    `pause()` and `resume()` hold and release dispatch of further steps.
    """

    def __init__(
        self,
        model_client: ModelClient,
        registry: ToolRegistry,
        planner_config: Optional[PlannerConfig] = None,
        executor_config: Optional[ExecutorConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.events = events or EventBus()
        self.planner = Planner(model_client, registry, planner_config)
        self.executor = Executor(registry, executor_config, self.events)
        self.state_machine = StateMachine()

        self.task: Optional[Task] = None
        self.plan: Optional[ExecutionPlan] = None
        self.results: Dict[str, StepResult] = {}
        self._pending: Optional[PendingConfirmation] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_error: Optional[CancellationError] = None
        # True from the moment a task is accepted until its run has fully drained
        self._active = False

        self.events.subscribe(EventType.STEP_COMPLETED, self._record_step)

    @property
    def state(self) -> AgentState:
        return self.state_machine.state

    @property
    def pending_confirmation(self) -> Optional[PendingConfirmation]:
        return self._pending

    # ─── Public API ──────────────────────────────────────────────────────────

    async def process(self, task_description: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        """
        Plan and execute a task.

        Always returns an AgentResponse, including for planning failures,
        failed steps and cancellation.

        Raises:
            BusyError: if the agent is not idle; nothing changes
        """
        self._reserve()
        try:
            task = Task(description=task_description, context=dict(context or {}))
            return await self._run(task)
        finally:
            await self._release()

    async def confirm(self, approved: bool) -> None:
        """Resolve the pending confirmation point"""
        pending = self._pending
        if self.state != AgentState.WAITING or pending is None:
            raise InvalidTransitionError(self.state.value, "confirm")

        trigger = Trigger.CONFIRMED if approved else Trigger.REJECTED
        await self._transition(trigger, step_id=pending.step_id, approved=approved)
        if not pending.future.done():
            pending.future.set_result(approved)

    async def cancel(self, reason: str = "Task cancelled") -> None:
        """
        Stop the current task. Running steps are cancelled cooperatively and
        the task ends in the error state with a CancellationError.
        """
        if not self.state.is_busy:
            raise InvalidTransitionError(self.state.value, Trigger.CANCEL.value)

        self._cancel_error = CancellationError(reason)
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._pending is not None and not self._pending.future.done():
            self._pending.future.set_result(False)

        self._fail_task(self._cancel_error)
        await self._transition(Trigger.CANCEL, error=reason)

    async def pause(self) -> None:
        """Stop dispatching further steps. Steps already running finish."""
        if self.state not in (AgentState.EXECUTING, AgentState.WAITING):
            raise InvalidTransitionError(self.state.value, "pause")
        await self.executor.pause()

    async def resume(self) -> None:
        if not self.executor.is_paused:
            raise InvalidTransitionError(self.state.value, "resume")
        await self.executor.resume()

    @property
    def is_paused(self) -> bool:
        return self.executor.is_paused

    async def reset(self) -> None:
        """Return a finished agent to idle so it can take another task"""
        if self.state == AgentState.IDLE:
            return
        if self.state.is_busy:
            raise BusyError(f"Cannot reset while {self.state.value}; cancel first")
        if self._active:
            raise BusyError("Cannot reset while the cancelled task is still stopping")

        await self._transition(Trigger.RESET)
        self.task = None
        self.plan = None
        self.results = {}
        self._cancel_event = None
        self._cancel_error = None

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the current task, for persistence"""
        task = self.task
        return {
            "task": task,
            "plan": self.plan.to_dict() if self.plan else None,
            "results": [r.to_dict() for r in self.results.values()],
            "history": self.state_machine.to_dict()["history"],
        }

    # ─── Pipeline ────────────────────────────────────────────────────────────

    async def _run(
        self,
        task: Task,
        plan: Optional[ExecutionPlan] = None,
        prior_results: Optional[List[StepResult]] = None,
    ) -> AgentResponse:
        start_time = time.time()
        self.task = task
        self.plan = None
        self.results = {r.step_id: r for r in prior_results or []}
        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        self._cancel_error = None

        task.started_at = _now()
        await self._transition(Trigger.START, task_id=task.id)

        try:
            if plan is None:
                plan = await self._until_cancelled(self._create_plan(task))
            self.plan = plan
            await self.events.publish(EventType.PLAN_CREATED, {"task_id": task.id, "plan": plan.to_dict()})
            self._raise_if_cancelled()
            await self._transition(Trigger.PLAN_READY, plan_id=plan.id, steps=len(plan.steps))

            results = await self.executor.execute(
                plan,
                task.context,
                on_confirmation=self._await_confirmation,
                cancel_event=cancel_event,
                prior_results=prior_results,
            )
            self._raise_if_cancelled()
        except CancellationError:
            return await self._finish(start_time, success=False)
        except PlanningError as e:
            logger.error(f"Planning failed for task {task.id}: {e}")
            self._fail_task(e)
            await self._transition(Trigger.PLAN_FAILED, error=str(e))
            return await self._finish(start_time, success=False)
        except Exception as e:
            if cancel_event.is_set():
                return await self._finish(start_time, success=False)
            logger.exception(f"Task {task.id} crashed")
            self._fail_task(e)
            if self.state_machine.can_dispatch(Trigger.FAIL):
                await self._transition(Trigger.FAIL, error=str(e))
            elif self.state_machine.can_dispatch(Trigger.PLAN_FAILED):
                await self._transition(Trigger.PLAN_FAILED, error=str(e))
            return await self._finish(start_time, success=False)

        failed = [r for r in results if r.status == StepStatus.FAILED]
        task.result = self._extract_output(results)
        if failed:
            error = StepExecutionError(
                failed[0].step_id,
                f"{len(failed)} step(s) failed: " + "; ".join(f"{r.step_id}: {r.error}" for r in failed),
            )
            self._fail_task(error)
            await self._transition(Trigger.FAIL, error=str(error))
        else:
            task.completed_at = _now()
            task.state = AgentState.COMPLETE
            await self._transition(Trigger.COMPLETE)

        success = all(r.status == StepStatus.SUCCEEDED for r in results)
        return await self._finish(start_time, success=success)

    async def _create_plan(self, task: Task) -> ExecutionPlan:
        try:
            return await self.planner.plan(task.description, task.context, task_id=task.id)
        except (PlanParseError, PlanTimeoutError) as e:
            logger.warning(f"Planning failed ({e}). Falling back to single-step plan")
            return self.planner.fallback_plan(task.description, task.context, task_id=task.id, reason=str(e))

    async def _until_cancelled(self, coro):
        """Await coro unless the task is cancelled first"""
        work = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
        self._raise_if_cancelled()
        return work.result()

    async def _await_confirmation(self, step: PlanStep, question: str) -> bool:
        loop = asyncio.get_running_loop()
        self._pending = PendingConfirmation(
            step_id=step.id,
            step_name=step.name,
            question=question,
            future=loop.create_future(),
        )
        try:
            await self._transition(Trigger.CONFIRMATION_REQUESTED, step_id=step.id)
            await self.events.publish(EventType.CONFIRMATION_REQUESTED, {
                "task_id": self.task.id,
                "step_id": step.id,
                "step_name": step.name,
                "question": question,
            })
            return await self._pending.future
        finally:
            self._pending = None

    # ─── Helpers ─────────────────────────────────────────────────────────────

    def _reserve(self) -> None:
        """Claim the agent for one task; must run before the caller's first await"""
        if self._active:
            raise BusyError("Agent is busy with another task")
        if self.state != AgentState.IDLE:
            raise BusyError(f"Agent is busy ({self.state.value}); reset or wait")
        self._active = True

    async def _release(self) -> None:
        self._active = False
        if self.executor.is_paused:
            await self.executor.resume()

    async def _transition(self, trigger: Trigger, **data: Any) -> None:
        event = self.state_machine.dispatch(trigger, data)
        if self.task is not None:
            self.task.state = event.to_state
        await self.events.publish(EventType.TRANSITION, {
            "task_id": self.task.id if self.task else None,
            **event.to_dict(),
        })

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise self._cancel_error or CancellationError("Task cancelled")

    def _fail_task(self, error: Exception) -> None:
        if self.task is not None:
            self.task.error = str(error)
            self.task.error_type = type(error).__name__
            self.task.completed_at = _now()

    def _record_step(self, event) -> None:
        result = event.data.get("result")
        if result:
            self.results[result["step_id"]] = StepResult.from_dict(result)

    async def _finish(self, start_time: float, success: bool) -> AgentResponse:
        task = self.task
        ordered = self._ordered_results()
        response = AgentResponse(
            success=success,
            task_id=task.id,
            state=self.state,
            duration_ms=int((time.time() - start_time) * 1000),
            plan=self.plan,
            results=ordered,
            output=task.result,
            summary=self._summarize(ordered),
            error=task.error,
            error_type=task.error_type,
        )
        if self.state == AgentState.COMPLETE:
            await self.events.publish(EventType.TASK_COMPLETED, response.to_dict())
        else:
            await self.events.publish(EventType.TASK_FAILED, response.to_dict())
        return response

    def _ordered_results(self) -> List[StepResult]:
        if self.plan is None:
            return list(self.results.values())
        return [self.results[s] for s in self.plan.step_ids if s in self.results]

    @staticmethod
    def _extract_output(results: List[StepResult]) -> Any:
        """Output of the last successful step"""
        for result in reversed(results):
            if result.succeeded:
                return result.output
        return None

    @staticmethod
    def _summarize(results: List[StepResult]) -> str:
        if not results:
            return "No steps executed"
        counts: Dict[str, int] = {}
        for r in results:
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        parts = [f"{n} {status}" for status, n in counts.items()]
        return f"{len(results)} step(s): " + ", ".join(parts)
