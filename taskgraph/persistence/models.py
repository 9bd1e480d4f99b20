"""
Pydantic models for persisted tasks, checkpoints and queries
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum
import uuid

from taskgraph.agent.agent import Task
from taskgraph.agent.plan import StepResult
from taskgraph.agent.state_machine import AgentState


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ===== Enums =====

class TaskStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STATE_TO_STATUS: Dict[AgentState, TaskStatus] = {
    AgentState.IDLE: TaskStatus.PENDING,
    AgentState.PLANNING: TaskStatus.PLANNING,
    AgentState.EXECUTING: TaskStatus.EXECUTING,
    AgentState.WAITING: TaskStatus.WAITING,
    AgentState.COMPLETE: TaskStatus.COMPLETED,
    AgentState.ERROR: TaskStatus.FAILED,
}


# ===== Task Models =====

class PersistedTask(BaseModel):
    id: str
    description: str
    status: TaskStatus
    state: AgentState
    context: Dict[str, Any] = Field(default_factory=dict)
    plan: Optional[Dict[str, Any]] = None
    results: List[Dict[str, Any]] = Field(default_factory=list)
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    history: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> "PersistedTask":
        """Build from Agent.snapshot()"""
        task: Task = snapshot["task"]
        status = STATE_TO_STATUS[task.state]
        if task.state == AgentState.ERROR and task.error_type == "CancellationError":
            status = TaskStatus.CANCELLED
        return cls(
            id=task.id,
            description=task.description,
            status=status,
            state=task.state,
            context=task.context,
            plan=snapshot.get("plan"),
            results=snapshot.get("results", []),
            result=task.result,
            error=task.error,
            error_type=task.error_type,
            history=snapshot.get("history", []),
            created_at=task.created_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
        )

    def to_task(self) -> Task:
        """Fresh, idle Task carrying this record's identity and input"""
        return Task(
            id=self.id,
            description=self.description,
            context=dict(self.context),
            created_at=self.created_at,
        )

    def step_results(self) -> List[StepResult]:
        return [StepResult.from_dict(r) for r in self.results]

    def summary(self) -> "TaskSummary":
        return TaskSummary(
            id=self.id,
            description=self.description,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            step_count=len((self.plan or {}).get("steps", [])),
            error=self.error,
        )


class TaskSummary(BaseModel):
    id: str
    description: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    step_count: int = 0
    error: Optional[str] = None


class TaskFilter(BaseModel):
    status: Optional[List[TaskStatus]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)
    order_by: Literal["created_at", "updated_at"] = "created_at"
    descending: bool = True

    def matches(self, task: PersistedTask) -> bool:
        if self.status and task.status not in self.status:
            return False
        if self.created_after and task.created_at < self.created_after:
            return False
        if self.created_before and task.created_at > self.created_before:
            return False
        return True

    def apply(self, tasks: List[PersistedTask]) -> List[TaskSummary]:
        """Filter, order and page in memory"""
        selected = [t for t in tasks if self.matches(t)]
        selected.sort(key=lambda t: getattr(t, self.order_by), reverse=self.descending)
        return [t.summary() for t in selected[self.offset:self.offset + self.limit]]


# ===== Checkpoint Models =====

class Checkpoint(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    timestamp: datetime = Field(default_factory=_now)
    state: AgentState
    steps_settled: int = 0
    reason: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    can_resume: bool = True

    def step_results(self) -> List[StepResult]:
        return [StepResult.from_dict(r) for r in self.data.get("results", [])]


class StorageStatistics(BaseModel):
    total_tasks: int
    tasks_by_status: Dict[str, int]
    total_checkpoints: int = 0
