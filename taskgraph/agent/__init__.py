"""
Agent package — planning and execution core

Components:
- ToolRegistry: Register and discover executable tools
- Planner: model-powered plan generation
- Executor: dependency-aware, bounded-concurrency plan runner
- StateMachine: task lifecycle
- Agent: process / confirm / cancel / reset entry point
"""
from taskgraph.agent.tool_registry import ToolRegistry, Tool, FunctionTool, ToolParameter, ToolResult
from taskgraph.agent.plan import ExecutionPlan, PlanStep, StepResult, StepStatus
from taskgraph.agent.planner import Planner
from taskgraph.agent.executor import Executor
from taskgraph.agent.events import EventBus, EventType, AgentEvent
from taskgraph.agent.state_machine import StateMachine, AgentState, Trigger
from taskgraph.agent.agent import Agent, AgentResponse, Task

__all__ = [
    "ToolRegistry", "Tool", "FunctionTool", "ToolParameter", "ToolResult",
    "ExecutionPlan", "PlanStep", "StepResult", "StepStatus",
    "Planner",
    "Executor",
    "EventBus", "EventType", "AgentEvent",
    "StateMachine", "AgentState", "Trigger",
    "Agent", "AgentResponse", "Task",
]
