"""
PersistentAgent - Agent whose tasks survive the process

Every transition is saved and checkpoints are taken while steps run,
so an interrupted or failed task can be resumed from storage: steps that
already succeeded keep their outputs and only the rest are executed.
"""
from typing import List, Optional
import logging

from taskgraph.agent.agent import Agent, AgentResponse
from taskgraph.agent.plan import ExecutionPlan
from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.config import ExecutorConfig, PlannerConfig
from taskgraph.errors import PersistenceError
from taskgraph.llm.base import ModelClient
from taskgraph.persistence.manager import PersistenceManager
from taskgraph.persistence.models import (
    Checkpoint,
    PersistedTask,
    StorageStatistics,
    TaskFilter,
    TaskStatus,
    TaskSummary,
)

logger = logging.getLogger(__name__)


class PersistentAgent(Agent):

    def __init__(
        self,
        model_client: ModelClient,
        registry: ToolRegistry,
        persistence: PersistenceManager,
        planner_config: Optional[PlannerConfig] = None,
        executor_config: Optional[ExecutorConfig] = None,
    ):
        super().__init__(model_client, registry, planner_config, executor_config)
        self.persistence = persistence
        persistence.attach(self)

    async def initialize(self) -> None:
        await self.persistence.initialize()

    async def shutdown(self) -> None:
        await self.persistence.shutdown()

    async def resume_task(self, task_id: str) -> AgentResponse:
        """
        Continue a stored task from its last known progress.

        Raises:
            BusyError: if this agent is not idle
            PersistenceError: if the task does not exist, already
                completed, or never got a plan
        """
        self._reserve()
        try:
            stored = await self.persistence.load_task(task_id)
            if stored is None:
                raise PersistenceError(f"Task '{task_id}' not found")
            if stored.status == TaskStatus.COMPLETED:
                raise PersistenceError(f"Task '{task_id}' already completed")
            if not stored.plan:
                raise PersistenceError(f"Task '{task_id}' has no plan to resume")

            plan = ExecutionPlan.from_dict(stored.plan, task_id=task_id, known_tools=self.registry.list_names())
            prior = await self.persistence.resume_results(stored)
            logger.info(f"Resuming task {task_id}: {len(prior)}/{len(plan.steps)} step(s) already succeeded")
            return await self._run(stored.to_task(), plan=plan, prior_results=prior)
        finally:
            await self._release()

    # ─── Queries ─────────────────────────────────────────────────────────────

    async def get_task(self, task_id: str) -> Optional[PersistedTask]:
        return await self.persistence.load_task(task_id)

    async def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[TaskSummary]:
        return await self.persistence.list_tasks(task_filter)

    async def delete_task(self, task_id: str) -> bool:
        return await self.persistence.delete_task(task_id)

    async def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        return await self.persistence.list_checkpoints(task_id)

    async def get_statistics(self) -> StorageStatistics:
        return await self.persistence.get_statistics()
