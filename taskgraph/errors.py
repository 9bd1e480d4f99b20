"""
Error taxonomy for planning, execution, agent lifecycle and persistence
"""
from typing import List, Optional


class TaskGraphError(Exception):
    """Base class for every error raised by taskgraph"""


# ===== Planning =====

class PlanningError(TaskGraphError):
    """Plan could not be produced"""


class PlanValidationError(PlanningError):
    """Plan structure is invalid: missing tool, bad dependency or a cycle"""

    def __init__(self, message: str, step_id: Optional[str] = None, cycle: Optional[List[str]] = None):
        super().__init__(message)
        self.step_id = step_id
        self.cycle = cycle or []


class PlanParseError(PlanningError):
    """Model output did not contain a usable plan"""


class PlanTimeoutError(PlanningError):
    """Model did not answer within the planning timeout"""


# ===== Execution =====

class StepError(TaskGraphError):
    """Failure attributable to a single step"""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id


class StepExecutionError(StepError):
    """Tool invocation failed"""

    def __init__(self, step_id: str, message: str, retryable: bool = True):
        super().__init__(step_id, message)
        self.retryable = retryable


class StepTimeoutError(StepError):
    """Tool invocation exceeded its time budget"""

    def __init__(self, step_id: str, timeout: float):
        super().__init__(step_id, f"Step '{step_id}' timed out after {timeout:g}s")
        self.timeout = timeout


class UnresolvedReferenceError(StepError):
    """A step parameter references output that does not exist"""

    def __init__(self, step_id: Optional[str], reference: str, reason: str):
        super().__init__(step_id or "", f"Cannot resolve '{reference}': {reason}")
        self.reference = reference
        self.reason = reason


# ===== Agent =====

class AgentError(TaskGraphError):
    """Agent lifecycle error"""


class BusyError(AgentError):
    """Agent is already processing a task"""


class CancellationError(AgentError):
    """Task was cancelled before it finished"""


class InvalidTransitionError(AgentError):
    """Trigger is not allowed in the current state"""

    def __init__(self, state: str, trigger: str):
        super().__init__(f"Cannot apply '{trigger}' in state '{state}'")
        self.state = state
        self.trigger = trigger


# ===== Persistence =====

class PersistenceError(TaskGraphError):
    """Storage backend failed or rejected a write"""
