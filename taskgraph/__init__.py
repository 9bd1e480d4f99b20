"""
taskgraph - plan a task into a graph of tool steps and run it
"""
from taskgraph.agent.agent import Agent, AgentResponse, Task
from taskgraph.agent.events import AgentEvent, EventBus, EventType
from taskgraph.agent.executor import Executor
from taskgraph.agent.plan import ExecutionPlan, PlanStep, StepResult, StepStatus
from taskgraph.agent.planner import Planner
from taskgraph.agent.state_machine import AgentState, StateMachine, Trigger
from taskgraph.agent.tool_registry import FunctionTool, Tool, ToolParameter, ToolRegistry, ToolResult
from taskgraph.config import ExecutorConfig, PlannerConfig

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentEvent",
    "AgentResponse",
    "AgentState",
    "EventBus",
    "EventType",
    "ExecutionPlan",
    "Executor",
    "ExecutorConfig",
    "FunctionTool",
    "PlanStep",
    "Planner",
    "PlannerConfig",
    "StateMachine",
    "StepResult",
    "StepStatus",
    "Task",
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "Trigger",
]
