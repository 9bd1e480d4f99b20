"""
Persistence manager - keeps storage in step with a running agent

Attached to an agent's event bus it:
- saves the task after every state transition (auto-save)
- writes a checkpoint after each answered confirmation point
- writes a checkpoint on step completion once checkpoint_interval
  seconds have passed since the previous one (0 = every step)
"""
from typing import Any, Dict, List, Optional
import logging
import time

from taskgraph.agent.agent import Agent
from taskgraph.agent.events import AgentEvent, EventType
from taskgraph.agent.plan import StepResult, StepStatus
from taskgraph.agent.state_machine import AgentState, Trigger
from taskgraph.config import Settings, settings
from taskgraph.persistence.adapters import StorageAdapter
from taskgraph.persistence.models import (
    Checkpoint,
    PersistedTask,
    StorageStatistics,
    TaskFilter,
    TaskSummary,
)

logger = logging.getLogger(__name__)

_CONFIRMATION_TRIGGERS = {Trigger.CONFIRMED.value, Trigger.REJECTED.value}


class PersistenceManager:

    def __init__(
        self,
        adapter: StorageAdapter,
        auto_save: bool = True,
        checkpoint_interval: float = 30.0,
        checkpoint_on_confirmation: bool = True,
    ):
        self.adapter = adapter
        self.auto_save = auto_save
        self.checkpoint_interval = checkpoint_interval
        self.checkpoint_on_confirmation = checkpoint_on_confirmation
        self._last_checkpoint: Dict[str, float] = {}

    @classmethod
    def from_settings(cls, adapter: StorageAdapter, s: Optional[Settings] = None) -> "PersistenceManager":
        s = s or settings
        return cls(
            adapter,
            auto_save=s.PERSISTENCE_AUTO_SAVE,
            checkpoint_interval=s.CHECKPOINT_INTERVAL_SECONDS,
            checkpoint_on_confirmation=s.CHECKPOINT_ON_CONFIRMATION,
        )

    async def initialize(self) -> None:
        await self.adapter.connect()

    async def shutdown(self) -> None:
        await self.adapter.disconnect()

    # ─── Agent wiring ────────────────────────────────────────────────────────

    def attach(self, agent: Agent) -> None:
        """Subscribe to an agent's events"""

        async def on_transition(event: AgentEvent) -> None:
            if event.data.get("to") == AgentState.IDLE.value or agent.task is None:
                return
            if self.auto_save:
                await self.save(agent)
            if self.checkpoint_on_confirmation and event.data.get("trigger") in _CONFIRMATION_TRIGGERS:
                await self.create_checkpoint(agent, reason="confirmation")

        async def on_step_completed(event: AgentEvent) -> None:
            if agent.task is None:
                return
            last = self._last_checkpoint.get(agent.task.id)
            if last is None or time.monotonic() - last >= self.checkpoint_interval:
                await self.create_checkpoint(agent, reason=f"step {event.data.get('step_id')}")

        agent.events.subscribe(EventType.TRANSITION, on_transition)
        agent.events.subscribe(EventType.STEP_COMPLETED, on_step_completed)

    async def save(self, agent: Agent) -> PersistedTask:
        record = PersistedTask.from_snapshot(agent.snapshot())
        await self.adapter.save_task(record)
        return record

    async def create_checkpoint(self, agent: Agent, reason: str = "") -> Checkpoint:
        snapshot = agent.snapshot()
        task = snapshot["task"]
        settled = sum(1 for r in agent.results.values() if r.status.is_terminal)
        checkpoint = Checkpoint(
            task_id=task.id,
            state=task.state,
            steps_settled=settled,
            reason=reason,
            data={
                "plan": snapshot["plan"],
                "results": snapshot["results"],
                "context": task.context,
            },
            can_resume=task.state != AgentState.COMPLETE and snapshot["plan"] is not None,
        )
        await self.adapter.save_checkpoint(checkpoint)
        self._last_checkpoint[task.id] = time.monotonic()
        logger.debug(f"Checkpoint {checkpoint.id} for task {task.id} ({reason})")
        await agent.events.publish(EventType.CHECKPOINT_CREATED, {
            "task_id": task.id,
            "checkpoint_id": checkpoint.id,
            "reason": reason,
        })
        return checkpoint

    # ─── Queries ─────────────────────────────────────────────────────────────

    async def load_task(self, task_id: str) -> Optional[PersistedTask]:
        return await self.adapter.load_task(task_id)

    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        return await self.adapter.list_tasks(task_filter)

    async def delete_task(self, task_id: str) -> bool:
        self._last_checkpoint.pop(task_id, None)
        return await self.adapter.delete_task(task_id)

    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        return await self.adapter.list_checkpoints(task_id)

    async def latest_checkpoint(self, task_id: str, resumable_only: bool = True) -> Optional[Checkpoint]:
        for checkpoint in await self.adapter.list_checkpoints(task_id):
            if checkpoint.can_resume or not resumable_only:
                return checkpoint
        return None

    async def get_history(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Transitions, step results and checkpoint trail of one task"""
        task = await self.adapter.load_task(task_id)
        if task is None:
            return None
        checkpoints = await self.adapter.list_checkpoints(task_id)
        return {
            "task_id": task_id,
            "status": task.status.value,
            "transitions": task.history,
            "results": task.results,
            "checkpoints": [
                {"id": c.id, "timestamp": c.timestamp.isoformat(), "state": c.state.value, "reason": c.reason}
                for c in checkpoints
            ],
        }

    async def resume_results(self, task: PersistedTask) -> List[StepResult]:
        """Succeeded results from the stored task and its latest resumable checkpoint"""
        merged: Dict[str, StepResult] = {}
        checkpoint = await self.latest_checkpoint(task.id)
        if checkpoint is not None:
            for result in checkpoint.step_results():
                merged[result.step_id] = result
        for result in task.step_results():
            merged[result.step_id] = result
        return [r for r in merged.values() if r.status == StepStatus.SUCCEEDED]

    async def get_statistics(self) -> StorageStatistics:
        return await self.adapter.get_statistics()
