"""Shared test fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from taskgraph.agent.plan import ExecutionPlan
from taskgraph.agent.state_machine import AgentState
from taskgraph.agent.tool_registry import FunctionTool, ToolParameter, ToolRegistry
from taskgraph.config import ExecutorConfig, PlannerConfig


class ScriptedModelClient:
    """Model client that replays canned answers and records every call.

    The last reply repeats once the script runs out. A reply that is an
    exception instance is raised instead of returned.
    """

    def __init__(self, *replies: Any, delay: float = 0.0):
        self.replies = list(replies) or [""]
        self.delay = delay
        self.calls: List[List[Dict[str, str]]] = []

    async def chat(self, messages, **options):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, prompt, **options):
        return await self.chat([{"role": "user", "content": prompt}], **options)


class CountingTool(FunctionTool):
    """Tool that fails its first `failures` calls, sleeps `delay`, and tracks concurrency."""

    def __init__(self, name: str, failures: int = 0, delay: float = 0.0, result: Any = None):
        super().__init__(
            name=name,
            description=f"Test tool {name}",
            func=self._run,
            parameters=[ToolParameter(name="value", type="any", description="Echoed back", required=False)],
        )
        self.failures = failures
        self.delay = delay
        self.result = result
        self.calls = 0
        self.active = 0
        self.peak = 0
        self.received: List[Dict[str, Any]] = []

    async def _run(self, **kwargs):
        self.calls += 1
        self.received.append(kwargs)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.calls <= self.failures:
                raise RuntimeError(f"{self.name} failure #{self.calls}")
            if self.result is not None:
                return self.result
            return kwargs.get("value", f"{self.name} done")
        finally:
            self.active -= 1


def make_plan(steps: List[Dict[str, Any]], **extra) -> ExecutionPlan:
    return ExecutionPlan.from_dict({"goal": "test", "steps": steps, **extra})


def plan_reply(steps: List[Dict[str, Any]], **extra) -> str:
    """A model answer containing a plan, wrapped in prose the way models tend to answer"""
    return "Here is the plan:\n```json\n" + json.dumps({"goal": "test", "steps": steps, **extra}) + "\n```"


async def wait_for_state(agent, state: AgentState, timeout: float = 2.0) -> None:
    async def poll():
        while agent.state != state:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture()
def echo():
    return CountingTool("echo")


@pytest.fixture()
def registry(echo):
    registry = ToolRegistry([echo])
    registry.register(FunctionTool(
        "llm_generate",
        "Answer a prompt",
        lambda prompt: f"answer: {prompt}",
        parameters=[ToolParameter(name="prompt", type="string", description="Prompt")],
    ))
    return registry


@pytest.fixture()
def fast_executor_config():
    return ExecutorConfig(max_concurrency=4, default_timeout=1.0, max_retries=3, retry_delay=0.0)


@pytest.fixture()
def planner_config():
    return PlannerConfig(model="test-model", max_steps=10, planning_timeout=1.0)
