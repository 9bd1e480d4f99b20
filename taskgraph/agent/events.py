"""
Event channel - publish/subscribe for agent progress

Handlers are awaited one after another in registration order, so every
listener sees events in the order they were emitted. A handler that
raises is logged and skipped; it never breaks the run.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import inspect
import logging

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TRANSITION = "transition"
    PLAN_CREATED = "plan:created"
    STEP_STARTED = "step:started"
    STEP_RETRY = "step:retry"
    STEP_COMPLETED = "step:completed"
    CONFIRMATION_REQUESTED = "confirmation:requested"
    EXECUTION_PAUSED = "execution:paused"
    EXECUTION_RESUMED = "execution:resumed"
    CHECKPOINT_CREATED = "checkpoint:created"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"


@dataclass
class AgentEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[AgentEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    Usage:
        bus = EventBus()
        bus.subscribe(EventType.STEP_COMPLETED, on_step)
        bus.subscribe_all(log_everything)
        await bus.publish(EventType.STEP_COMPLETED, {"step_id": "step_1"})
    """

    def __init__(self):
        # (event type or None for every type, handler), in subscription order
        self._handlers: List[Tuple[Optional[EventType], EventHandler]] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.append((event_type, handler))

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event type"""
        self._handlers.append((None, handler))

    def unsubscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> None:
        entry = (event_type, handler)
        if entry in self._handlers:
            self._handlers.remove(entry)

    async def publish(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> AgentEvent:
        event = AgentEvent(type=event_type, data=data or {})
        listeners = [h for t, h in self._handlers if t is None or t == event_type]
        for handler in listeners:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Event handler failed for {event_type.value}")
        return event
