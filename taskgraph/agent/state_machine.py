"""
Agent State Machine - lifecycle of one task

    idle → planning → executing ⇄ waiting → complete | error → idle
"""
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging

from taskgraph.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    WAITING = "waiting"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_busy(self) -> bool:
        return self in (AgentState.PLANNING, AgentState.EXECUTING, AgentState.WAITING)


class Trigger(str, Enum):
    START = "start"
    PLAN_READY = "plan_ready"
    PLAN_FAILED = "plan_failed"
    CONFIRMATION_REQUESTED = "confirmation_requested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"
    RESET = "reset"


TRANSITIONS: Dict[Tuple[AgentState, Trigger], AgentState] = {
    (AgentState.IDLE, Trigger.START): AgentState.PLANNING,
    (AgentState.PLANNING, Trigger.PLAN_READY): AgentState.EXECUTING,
    (AgentState.PLANNING, Trigger.PLAN_FAILED): AgentState.ERROR,
    (AgentState.EXECUTING, Trigger.CONFIRMATION_REQUESTED): AgentState.WAITING,
    (AgentState.WAITING, Trigger.CONFIRMED): AgentState.EXECUTING,
    (AgentState.WAITING, Trigger.REJECTED): AgentState.EXECUTING,
    (AgentState.EXECUTING, Trigger.COMPLETE): AgentState.COMPLETE,
    (AgentState.EXECUTING, Trigger.FAIL): AgentState.ERROR,
    (AgentState.PLANNING, Trigger.CANCEL): AgentState.ERROR,
    (AgentState.EXECUTING, Trigger.CANCEL): AgentState.ERROR,
    (AgentState.WAITING, Trigger.CANCEL): AgentState.ERROR,
    (AgentState.COMPLETE, Trigger.RESET): AgentState.IDLE,
    (AgentState.ERROR, Trigger.RESET): AgentState.IDLE,
}


@dataclass
class TransitionEvent:
    from_state: AgentState
    to_state: AgentState
    trigger: Trigger
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "trigger": self.trigger.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class StateMachine:
    """Table-driven state machine with a transition history"""

    def __init__(self, initial: AgentState = AgentState.IDLE):
        self._state = initial
        self._history: List[TransitionEvent] = []

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def history(self) -> List[TransitionEvent]:
        return list(self._history)

    def can_dispatch(self, trigger: Trigger) -> bool:
        return (self._state, trigger) in TRANSITIONS

    def available_triggers(self) -> List[Trigger]:
        return [t for (s, t) in TRANSITIONS if s == self._state]

    def dispatch(self, trigger: Trigger, data: Optional[Dict[str, Any]] = None) -> TransitionEvent:
        """
        Apply a trigger.

        Raises:
            InvalidTransitionError: if the trigger is not allowed from the
                current state; the state is left unchanged
        """
        target = TRANSITIONS.get((self._state, trigger))
        if target is None:
            raise InvalidTransitionError(self._state.value, trigger.value)

        event = TransitionEvent(
            from_state=self._state,
            to_state=target,
            trigger=trigger,
            data=data or {},
        )
        self._state = target
        self._history.append(event)
        logger.info(f"State: {event.from_state.value} → {event.to_state.value} ({trigger.value})")
        return event

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "history": [e.to_dict() for e in self._history],
        }
