"""
Executor — Dependency-aware plan runner (the agent loop)

Runs an ExecutionPlan against a ToolRegistry:
1. Dispatch every pending step whose dependencies all succeeded,
   up to max_concurrency at a time
2. Resolve step references against the outputs of succeeded steps
3. Invoke the tool under a timeout, retrying failures with a fixed delay
4. Skip the dependents of anything that failed, keep independent
   branches going
5. Hold dispatch at confirmation points until the handler answers
6. Hold dispatch while paused; running steps are left to finish
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from datetime import datetime, timezone
import asyncio
import logging

from taskgraph.agent.events import EventBus, EventType
from taskgraph.agent.plan import ExecutionPlan, PlanStep, StepResult, StepStatus
from taskgraph.agent.references import resolve_params
from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.config import ExecutorConfig
from taskgraph.errors import StepError, StepExecutionError, StepTimeoutError, UnresolvedReferenceError

logger = logging.getLogger(__name__)

ConfirmationHandler = Callable[[PlanStep, str], Awaitable[bool]]

_BLOCKING = (StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.CANCELLED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Run:
    """Mutable bookkeeping for one execution of a plan"""

    def __init__(self, plan: ExecutionPlan, context: Dict[str, Any]):
        self.plan = plan
        self.context = context
        self.status: Dict[str, StepStatus] = {s.id: StepStatus.PENDING for s in plan.steps}
        self.results: Dict[str, StepResult] = {}
        self.outputs: Dict[str, Any] = {}
        self.decided: Set[str] = set()

    def ready_steps(self) -> List[PlanStep]:
        return [
            step for step in self.plan.steps
            if self.status[step.id] == StepStatus.PENDING
            and all(self.status[d] == StepStatus.SUCCEEDED for d in step.depends_on)
        ]

    def pending_steps(self) -> List[PlanStep]:
        return [s for s in self.plan.steps if self.status[s.id] == StepStatus.PENDING]

    def ordered_results(self) -> List[StepResult]:
        return [self.results[s.id] for s in self.plan.steps if s.id in self.results]


class Executor:
    """
    Usage:
        executor = Executor(registry, ExecutorConfig(max_concurrency=2))
        results = await executor.execute(plan, context={"user": "ada"})
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: Optional[ExecutorConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.config = config or ExecutorConfig()
        self.events = events or EventBus()
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    async def pause(self) -> None:
        """Stop dispatching new steps; steps already running finish normally"""
        if self.is_paused:
            return
        self._resumed.clear()
        logger.info("Execution paused")
        await self.events.publish(EventType.EXECUTION_PAUSED)

    async def resume(self) -> None:
        if not self.is_paused:
            return
        self._resumed.set()
        logger.info("Execution resumed")
        await self.events.publish(EventType.EXECUTION_RESUMED)

    async def execute(
        self,
        plan: ExecutionPlan,
        context: Optional[Dict[str, Any]] = None,
        *,
        on_confirmation: Optional[ConfirmationHandler] = None,
        cancel_event: Optional[asyncio.Event] = None,
        prior_results: Optional[List[StepResult]] = None,
    ) -> List[StepResult]:
        """
        Run every step of the plan to a terminal status.

        Args:
            plan: Validated plan
            context: Task context, addressable from params as "context.*"
            on_confirmation: Awaited with (step, question) when a
                confirmation point is reached; False rejects the step.
                Points are auto-approved when no handler is given.
            cancel_event: Once set, nothing more is dispatched and
                running steps are cancelled
            prior_results: Results of steps that already succeeded in an
                earlier run; those steps are not run again

        Returns:
            One StepResult per step, in plan order
        """
        run = _Run(plan, context or {})
        for result in prior_results or []:
            if result.succeeded and result.step_id in run.status:
                run.status[result.step_id] = StepStatus.SUCCEEDED
                run.results[result.step_id] = result
                run.outputs[result.step_id] = result.output

        running: Dict[asyncio.Future, PlanStep] = {}
        gate: Optional[asyncio.Future] = None
        gate_step: Optional[PlanStep] = None
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
        resume_waiter: Optional[asyncio.Future] = None

        try:
            while not (cancel_event and cancel_event.is_set()):
                await self._propagate_skips(run)
                if gate is None and not self.is_paused:
                    gate, gate_step = await self._dispatch_ready(run, running, on_confirmation)

                waiters: Set[asyncio.Future] = set(running)
                if gate is not None:
                    waiters.add(gate)
                if self.is_paused and run.pending_steps():
                    resume_waiter = asyncio.ensure_future(self._resumed.wait())
                    waiters.add(resume_waiter)
                if not waiters:
                    break
                if cancel_waiter is not None:
                    waiters.add(cancel_waiter)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if resume_waiter is not None:
                    resume_waiter.cancel()
                    resume_waiter = None

                if gate is not None and gate in done:
                    approved = gate.result()
                    run.decided.add(gate_step.id)
                    if not approved and not (cancel_event and cancel_event.is_set()):
                        logger.info(f"Step {gate_step.id} rejected at confirmation point")
                        await self._settle(run, self._skipped(gate_step, "Rejected at confirmation point"))
                    gate = gate_step = None

                for finished in [f for f in done if f in running]:
                    running.pop(finished)
                    await self._settle(run, finished.result())

            if cancel_event and cancel_event.is_set():
                await self._abandon(run, running)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if resume_waiter is not None:
                resume_waiter.cancel()
            if gate is not None and not gate.done():
                gate.cancel()
            for pending in running:
                pending.cancel()

        return run.ordered_results()

    @staticmethod
    def statistics(results: List[StepResult]) -> Dict[str, Any]:
        """Counts per status and timing for a finished run"""
        counts = {status.value: 0 for status in StepStatus if status.is_terminal}
        for r in results:
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        timed = [r.duration_ms for r in results if r.started_at]
        total = sum(timed)
        return {
            "total": len(results),
            **counts,
            "total_duration_ms": total,
            "average_duration_ms": int(total / len(timed)) if timed else 0,
        }

    # ─── Dispatch ────────────────────────────────────────────────────────────

    async def _dispatch_ready(
        self,
        run: _Run,
        running: Dict[asyncio.Future, PlanStep],
        on_confirmation: Optional[ConfirmationHandler],
    ) -> Tuple[Optional[asyncio.Future], Optional[PlanStep]]:
        for step in run.ready_steps():
            if len(running) >= self.config.max_concurrency:
                break

            question = run.plan.confirmation_points.get(step.id)
            if question is not None and step.id not in run.decided:
                if on_confirmation is not None:
                    return asyncio.ensure_future(on_confirmation(step, question)), step
                logger.info(f"No confirmation handler, auto-approving {step.id}")
                run.decided.add(step.id)

            run.status[step.id] = StepStatus.RUNNING
            await self.events.publish(EventType.STEP_STARTED, {
                "step_id": step.id,
                "step_name": step.name,
                "tool": step.tool,
            })
            running[asyncio.ensure_future(self._run_step(step, run))] = step
        return None, None

    async def _run_step(self, step: PlanStep, run: _Run) -> StepResult:
        started_at = _now()
        max_retries = step.max_retries if step.max_retries is not None else self.config.max_retries
        timeout = step.timeout or self.config.default_timeout

        try:
            params = resolve_params(step.params, run.outputs, run.context, step_id=step.id)
        except UnresolvedReferenceError as e:
            logger.warning(f"Step {step.id}: {e}")
            return self._failed(step, e, started_at, retries=0)

        attempt = 0
        while True:
            try:
                output = await asyncio.wait_for(self._invoke(step, params), timeout=timeout)
                return StepResult(
                    step_id=step.id,
                    step_name=step.name,
                    status=StepStatus.SUCCEEDED,
                    output=output,
                    started_at=started_at,
                    completed_at=_now(),
                    retries=attempt,
                )
            except asyncio.TimeoutError:
                error: StepError = StepTimeoutError(step.id, timeout)
            except StepExecutionError as e:
                error = e
                if not e.retryable:
                    return self._failed(step, error, started_at, retries=attempt)

            if attempt >= max_retries:
                logger.warning(f"Step {step.id} failed after {attempt + 1} attempt(s): {error}")
                return self._failed(step, error, started_at, retries=attempt)

            attempt += 1
            logger.warning(f"Step {step.id} attempt {attempt} failed: {error}. Retrying")
            await self.events.publish(EventType.STEP_RETRY, {
                "step_id": step.id,
                "attempt": attempt,
                "error": str(error),
            })
            await asyncio.sleep(self.config.retry_delay)

    async def _invoke(self, step: PlanStep, params: Dict[str, Any]) -> Any:
        result = await self.registry.execute(step.tool, **params)
        if not result.success:
            raise StepExecutionError(step.id, result.error or "Tool failed", retryable=result.retryable)
        return result.output

    # ─── Settlement ──────────────────────────────────────────────────────────

    async def _settle(self, run: _Run, result: StepResult) -> None:
        run.status[result.step_id] = result.status
        run.results[result.step_id] = result
        if result.succeeded:
            run.outputs[result.step_id] = result.output
        await self.events.publish(EventType.STEP_COMPLETED, {
            "step_id": result.step_id,
            "step_name": result.step_name,
            "status": result.status.value,
            "result": result.to_dict(),
        })

    async def _propagate_skips(self, run: _Run) -> None:
        changed = True
        while changed:
            changed = False
            for step in run.pending_steps():
                blocked = [d for d in step.depends_on if run.status[d] in _BLOCKING]
                if blocked:
                    await self._settle(run, self._skipped(step, f"Dependency '{blocked[0]}' did not succeed"))
                    changed = True

    async def _abandon(self, run: _Run, running: Dict[asyncio.Future, PlanStep]) -> None:
        for pending in running:
            pending.cancel()
        await asyncio.gather(*running, return_exceptions=True)
        for finished, step in list(running.items()):
            if finished.cancelled() or finished.exception() is not None:
                result = StepResult(
                    step_id=step.id,
                    step_name=step.name,
                    status=StepStatus.CANCELLED,
                    error="Cancelled while running",
                    error_type="CancellationError",
                    completed_at=_now(),
                )
            else:
                result = finished.result()
            await self._settle(run, result)
        running.clear()

        for step in run.pending_steps():
            await self._settle(run, self._skipped(step, "Cancelled before dispatch"))

    @staticmethod
    def _skipped(step: PlanStep, reason: str) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_name=step.name,
            status=StepStatus.SKIPPED,
            error=reason,
            completed_at=_now(),
        )

    @staticmethod
    def _failed(step: PlanStep, error: Exception, started_at: datetime, retries: int) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_name=step.name,
            status=StepStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__,
            started_at=started_at,
            completed_at=_now(),
            retries=retries,
        )
