"""
Plan Model - Steps, their dependency graph, and per-step results

A plan is validated when it is built: unique step ids, no unknown or
self dependencies, no cycles. Steps referenced from another step's
params become implicit dependencies of that step.
"""
from typing import Dict, Any, List, Optional, Iterable, Sequence, Set, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid

from taskgraph.agent.references import CONTEXT_ROOT, STEP_ID, iter_references
from taskgraph.errors import PlanValidationError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


@dataclass(frozen=True)
class PlanStep:
    """A single tool invocation in a plan"""
    id: str
    tool: str
    name: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    description: str = ""
    timeout: Optional[float] = None
    max_retries: Optional[int] = None

    def __post_init__(self):
        if not self.name:
            object.__setattr__(self, "name", self.id)
        try:
            referenced = [ref.step_id for ref in iter_references(self.params) if not ref.is_context]
        except ValueError as e:
            raise PlanValidationError(f"Step '{self.id}': {e}", step_id=self.id)

        deps = list(dict.fromkeys(self.depends_on))
        for step_id in referenced:
            if step_id not in deps:
                deps.append(step_id)
        object.__setattr__(self, "depends_on", tuple(deps))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "tool": self.tool,
            "description": self.description,
            "params": self.params,
            "depends_on": list(self.depends_on),
        }
        if self.timeout is not None:
            data["timeout"] = self.timeout
        if self.max_retries is not None:
            data["max_retries"] = self.max_retries
        return data


@dataclass
class StepResult:
    """Outcome of one step"""
    step_id: str
    step_name: str
    status: StepStatus
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retries: int = 0

    @property
    def duration_ms(self) -> int:
        if not self.started_at or not self.completed_at:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "error_type": self.error_type,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        return cls(
            step_id=data["step_id"],
            step_name=data.get("step_name", data["step_id"]),
            status=StepStatus(data["status"]),
            output=data.get("output"),
            error=data.get("error"),
            error_type=data.get("error_type"),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            retries=data.get("retries", 0),
        )


@dataclass(frozen=True)
class ExecutionPlan:
    """Complete, validated execution plan for one task"""
    goal: str
    steps: Tuple[PlanStep, ...]
    confirmation_points: Dict[str, str] = field(default_factory=dict)
    task_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))
        self.validate()

    # ─── Validation ──────────────────────────────────────────────────────────

    def validate(self, known_tools: Optional[Iterable[str]] = None) -> None:
        """
        Check the structural invariants of the plan.

        Args:
            known_tools: When given, every step's tool must be in it

        Raises:
            PlanValidationError: naming the offending step or cycle
        """
        if not self.steps:
            raise PlanValidationError("Plan has no steps")

        ids: Set[str] = set()
        for step in self.steps:
            if not step.id:
                raise PlanValidationError("Step without an id")
            if not STEP_ID.fullmatch(step.id):
                raise PlanValidationError(
                    f"Step id '{step.id}' may only hold letters, digits, '_' and '-'", step_id=step.id
                )
            if step.id == CONTEXT_ROOT:
                raise PlanValidationError(f"Step id '{CONTEXT_ROOT}' is reserved", step_id=step.id)
            if step.id in ids:
                raise PlanValidationError(f"Duplicate step id '{step.id}'", step_id=step.id)
            if not step.tool:
                raise PlanValidationError(f"Step '{step.id}' has no tool", step_id=step.id)
            ids.add(step.id)

        if known_tools is not None:
            tools = set(known_tools)
            for step in self.steps:
                if step.tool not in tools:
                    raise PlanValidationError(
                        f"Step '{step.id}' uses unknown tool '{step.tool}'", step_id=step.id
                    )

        for step in self.steps:
            for dep in step.depends_on:
                if dep == step.id:
                    raise PlanValidationError(f"Step '{step.id}' depends on itself", step_id=step.id)
                if dep not in ids:
                    raise PlanValidationError(
                        f"Step '{step.id}' depends on unknown step '{dep}'", step_id=step.id
                    )

        for step_id in self.confirmation_points:
            if step_id not in ids:
                raise PlanValidationError(
                    f"Confirmation point names unknown step '{step_id}'", step_id=step_id
                )

        cycle = find_cycle({s.id: s.depends_on for s in self.steps})
        if cycle:
            raise PlanValidationError(
                f"Dependency cycle: {' -> '.join(cycle)}", step_id=cycle[0], cycle=cycle
            )

    # ─── Graph queries ───────────────────────────────────────────────────────

    def get_step(self, step_id: str) -> Optional[PlanStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def dependents_of(self, step_id: str) -> Set[str]:
        """All steps that transitively depend on step_id"""
        found: Set[str] = set()
        frontier = [step_id]
        while frontier:
            current = frontier.pop()
            for step in self.steps:
                if current in step.depends_on and step.id not in found:
                    found.add(step.id)
                    frontier.append(step.id)
        return found

    def topological_order(self) -> List[PlanStep]:
        """Steps ordered so every dependency precedes its dependents; ties keep plan order"""
        placed: Set[str] = set()
        ordered: List[PlanStep] = []
        remaining = list(self.steps)
        while remaining:
            for step in remaining:
                if all(dep in placed for dep in step.depends_on):
                    ordered.append(step)
                    placed.add(step.id)
                    remaining.remove(step)
                    break
        return ordered

    def parallel_groups(self) -> List[List[str]]:
        """Steps grouped by dependency depth; each group can run concurrently"""
        depth: Dict[str, int] = {}
        for step in self.topological_order():
            depth[step.id] = 1 + max((depth[d] for d in step.depends_on), default=-1)
        groups: List[List[str]] = [[] for _ in range(max(depth.values()) + 1)]
        for step in self.steps:
            groups[depth[step.id]].append(step.id)
        return groups

    # ─── Serialization ───────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "goal": self.goal,
            "steps": [s.to_dict() for s in self.steps],
            "confirmation_points": dict(self.confirmation_points),
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        task_id: Optional[str] = None,
        known_tools: Optional[Iterable[str]] = None,
    ) -> "ExecutionPlan":
        """
        Build a plan from an untrusted structure (model output or storage).

        Accepts "tool_name"/"tool", "args"/"params" and "dependsOn"/"depends_on"
        spellings, and a per-step "confirm" (question text or true).

        Raises:
            PlanValidationError: if the structure or the graph is invalid
        """
        if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
            raise PlanValidationError("Plan must be an object with a 'steps' list")

        steps = []
        confirmation_points = _parse_confirmation_points(data.get("confirmation_points"))
        for index, raw in enumerate(data["steps"]):
            step = _parse_step(raw, index)
            steps.append(step)
            question = _first(raw, "confirm", "need_confirmation", "needConfirmation")
            if question:
                confirmation_points.setdefault(
                    step.id,
                    question if isinstance(question, str) else f"Proceed with '{step.name}'?",
                )

        created_at = _parse_dt(data.get("created_at")) or _now()
        plan = cls(
            goal=str(data.get("goal", "")),
            steps=tuple(steps),
            confirmation_points=confirmation_points,
            task_id=task_id or data.get("task_id"),
            id=data.get("id") or str(uuid.uuid4()),
            created_at=created_at,
            metadata=dict(data.get("metadata") or {}),
        )
        if known_tools is not None:
            plan.validate(known_tools)
        return plan


def find_cycle(graph: Dict[str, Sequence[str]]) -> Optional[List[str]]:
    """
    Depth-first search with a recursion-stack marker.

    Returns:
        The cycle as a list of ids (first id repeated at the end), or None
    """
    visiting, done = set(), set()
    stack: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        visiting.add(node)
        stack.append(node)
        for dep in graph.get(node, ()):
            if dep in visiting:
                return stack[stack.index(dep):] + [dep]
            if dep not in done:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        visiting.discard(node)
        done.add(node)
        return None

    for node in graph:
        if node not in done:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _parse_step(raw: Any, index: int) -> PlanStep:
    if not isinstance(raw, dict):
        raise PlanValidationError(f"Step #{index + 1} is not an object")

    step_id = _first(raw, "id", "step_id")
    if step_id is None or str(step_id) == "":
        raise PlanValidationError(f"Step #{index + 1} has no id")
    step_id = str(step_id)

    tool = _first(raw, "tool", "tool_name")
    if not isinstance(tool, str) or not tool:
        raise PlanValidationError(f"Step '{step_id}' has no tool", step_id=step_id)

    params = _first(raw, "params", "args") or {}
    if not isinstance(params, dict):
        raise PlanValidationError(f"Step '{step_id}' params must be an object", step_id=step_id)

    depends_on = _first(raw, "depends_on", "dependsOn") or []
    if not isinstance(depends_on, list):
        raise PlanValidationError(f"Step '{step_id}' depends_on must be a list", step_id=step_id)

    timeout = raw.get("timeout")
    max_retries = _first(raw, "max_retries", "maxRetries")
    try:
        return PlanStep(
            id=step_id,
            tool=tool,
            name=str(raw.get("name") or ""),
            params=params,
            depends_on=tuple(str(d) for d in depends_on),
            description=str(raw.get("description") or ""),
            timeout=float(timeout) if timeout is not None else None,
            max_retries=int(max_retries) if max_retries is not None else None,
        )
    except (TypeError, ValueError) as e:
        raise PlanValidationError(f"Step '{step_id}': {e}", step_id=step_id)


def _parse_confirmation_points(raw: Any) -> Dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    if isinstance(raw, list):
        points = {}
        for item in raw:
            if not isinstance(item, dict) or "step_id" not in item:
                raise PlanValidationError("Confirmation points need a 'step_id'")
            step_id = str(item["step_id"])
            points[step_id] = str(item.get("question") or f"Proceed with '{step_id}'?")
        return points
    raise PlanValidationError("'confirmation_points' must be an object or a list")
