"""
Planner — Model-powered execution plan generator

Takes a task description + available tools → validated ExecutionPlan.
The model answer may wrap the JSON in prose or Markdown fences; once a
JSON block is found its structure is validated strictly.
"""
from typing import Dict, Any, List, Optional
from dataclasses import replace
import asyncio
import json
import logging
import re
import time

from taskgraph.agent.plan import ExecutionPlan, PlanStep
from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.config import PlannerConfig
from taskgraph.errors import PlanParseError, PlanTimeoutError
from taskgraph.llm.base import ModelClient

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class Planner:
    """
    Turns a natural-language task into an ExecutionPlan.

    Usage:
        planner = Planner(model_client, registry, PlannerConfig(max_steps=5))
        try:
            plan = await planner.plan("Summarize report.txt")
        except (PlanParseError, PlanTimeoutError):
            plan = planner.fallback_plan("Summarize report.txt")
    """

    def __init__(
        self,
        model_client: ModelClient,
        registry: Optional[ToolRegistry] = None,
        config: Optional[PlannerConfig] = None,
    ):
        self.client = model_client
        self.registry = registry
        self.config = config or PlannerConfig()

    async def plan(
        self,
        task_description: str,
        context: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> ExecutionPlan:
        """
        Generate an execution plan for the task.

        Args:
            task_description: The user's natural language request
            context: Extra task data the steps may reference as "context.*"
            task_id: Owning task, recorded on the plan

        Returns:
            Validated ExecutionPlan

        Raises:
            PlanTimeoutError: the model did not answer within planning_timeout
            PlanParseError: no usable plan in the model answer
            PlanValidationError: the plan is structurally invalid
        """
        messages = self._build_messages(task_description, context or {})

        start_time = time.time()
        try:
            text = await asyncio.wait_for(
                self.client.chat(messages, model=self.config.model, temperature=0.2),
                timeout=self.config.planning_timeout,
            )
        except asyncio.TimeoutError:
            raise PlanTimeoutError(f"Planning exceeded {self.config.planning_timeout:g}s")
        except Exception as e:
            raise PlanParseError(f"Model client failed: {e}") from e
        latency_ms = int((time.time() - start_time) * 1000)

        data = self._parse_plan_json(text)
        if isinstance(data, list):
            data = {"steps": data}
        if not isinstance(data, dict) or not isinstance(data.get("steps"), list) or not data["steps"]:
            raise PlanParseError("Model answer has no step list")

        confidence = data.get("confidence")
        if isinstance(confidence, (int, float)) and confidence < self.config.confidence_threshold:
            raise PlanParseError(
                f"Plan confidence {confidence} below threshold {self.config.confidence_threshold}"
            )

        data.setdefault("goal", task_description)
        plan = ExecutionPlan.from_dict(data, task_id=task_id)
        plan = self._truncate(plan)
        if not self.config.enable_parallel:
            plan = self._sequential(plan)
        if self.registry is not None:
            plan.validate(self.registry.list_names())
            plan = self._gate_confirmed_tools(plan)

        plan.metadata.update({
            "source": "model",
            "confidence": confidence,
            "planning_latency_ms": latency_ms,
        })
        logger.info(f"Plan {plan.id}: {len(plan.steps)} step(s), groups={plan.parallel_groups()}")
        return plan

    def fallback_plan(
        self,
        task_description: str,
        context: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
        reason: str = "",
    ) -> ExecutionPlan:
        """Single-step plan that hands the raw task to the fallback tool"""
        prompt = task_description
        if context:
            prompt = f"{task_description}\n\nContext:\n{json.dumps(context, default=str, indent=2)}"
        return ExecutionPlan(
            goal=task_description,
            task_id=task_id,
            steps=(
                PlanStep(
                    id="step_1",
                    tool=self.config.fallback_tool,
                    name="Direct response",
                    description="Answer the task in a single step (fallback)",
                    params={"prompt": prompt},
                ),
            ),
            metadata={"source": "fallback", "reason": reason},
        )

    # ─── Prompt ──────────────────────────────────────────────────────────────

    def _build_messages(self, task_description: str, context: Dict[str, Any]) -> List[Dict[str, str]]:
        tools = self.registry.list_tools() if self.registry is not None else []
        tool_descriptions = self._format_tools_for_prompt(tools) or "(no tools registered)"

        parallel_rule = (
            "Steps that do not depend on each other run in parallel; only add depends_on where needed."
            if self.config.enable_parallel
            else "Steps run one at a time in the order given."
        )
        context_block = ""
        if context:
            context_block = (
                "\nTASK CONTEXT (reference values as {{context.<key>}}):\n"
                f"{json.dumps(context, default=str, indent=2)}\n"
            )

        system = f"""You are the planning engine of a task orchestration agent.

Your job: break the user's task into a graph of tool invocations using ONLY the available tools.

AVAILABLE TOOLS:
{tool_descriptions}

RULES:
1. Use at most {self.config.max_steps} steps. Each step uses exactly one tool by its exact name.
2. Give every step a unique id such as "step_1".
3. To pass an earlier step's output into params, write "{{{{step_1.output}}}}" or a path into it
   such as "{{{{step_1.output.items[0].name}}}}". Referenced steps must be listed in depends_on.
4. {parallel_rule}
5. Set "confirm" to a question on any step that changes external state and needs user approval.
6. Keep it minimal. Don't add unnecessary steps.

Respond ONLY with valid JSON:
{{
    "goal": "Brief description of the overall goal",
    "confidence": 0.9,
    "steps": [
        {{
            "id": "step_1",
            "name": "Short name",
            "tool": "tool_name_here",
            "description": "What this step does",
            "params": {{"key": "value"}},
            "depends_on": []
        }}
    ]
}}"""

        return [
            {"role": "system", "content": system},
            {"role": "user", "content": f"{context_block}\nTASK: {task_description}"},
        ]

    def _format_tools_for_prompt(self, tools: List[Dict[str, Any]]) -> str:
        """Format tool schemas into a readable string for the model"""
        lines = []
        for i, tool in enumerate(tools, 1):
            schema = tool.get("parameters", {})
            required = set(schema.get("required", []))
            param_strs = []
            for pname, pinfo in schema.get("properties", {}).items():
                flag = "" if pname in required else ", optional"
                param_strs.append(
                    f"    - {pname} ({pinfo.get('type', 'any')}{flag}): {pinfo.get('description', '')}"
                )
            param_block = "\n".join(param_strs) if param_strs else "    (no parameters)"

            lines.append(
                f"{i}. **{tool['name']}** [{tool.get('category', 'custom')}]\n"
                f"   {tool['description']}\n"
                f"   Parameters:\n{param_block}"
            )
        return "\n\n".join(lines)

    # ─── Parsing ─────────────────────────────────────────────────────────────

    def _parse_plan_json(self, text: str) -> Any:
        """Extract and parse JSON from the model answer"""
        text = (text or "").strip()

        # Try direct parse
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # Try fenced blocks
        for block in _FENCE.findall(text):
            try:
                return json.loads(block.strip())
            except json.JSONDecodeError:
                continue

        # Try the first decodable object or array embedded in prose
        decoder = json.JSONDecoder()
        for i, char in enumerate(text):
            if char not in "{[":
                continue
            try:
                value, _ = decoder.raw_decode(text, i)
            except json.JSONDecodeError:
                continue
            if isinstance(value, list) or (isinstance(value, dict) and "steps" in value):
                return value

        raise PlanParseError(f"Could not parse plan JSON from model answer: {text[:200]}")

    # ─── Shaping ─────────────────────────────────────────────────────────────

    def _truncate(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Keep the first max_steps steps, minus any that depend on a dropped step"""
        if len(plan.steps) <= self.config.max_steps:
            return plan

        kept = list(plan.steps[:self.config.max_steps])
        changed = True
        while changed:
            kept_ids = {s.id for s in kept}
            survivors = [s for s in kept if all(d in kept_ids for d in s.depends_on)]
            changed = len(survivors) != len(kept)
            kept = survivors

        if not kept:
            raise PlanParseError(
                f"No step of the first {self.config.max_steps} survives truncation of a "
                f"{len(plan.steps)}-step plan"
            )
        logger.warning(f"Plan truncated from {len(plan.steps)} to {len(kept)} step(s)")
        kept_ids = {s.id for s in kept}
        return replace(
            plan,
            steps=tuple(kept),
            confirmation_points={k: v for k, v in plan.confirmation_points.items() if k in kept_ids},
            metadata={**plan.metadata, "truncated_from": len(plan.steps)},
        )

    def _gate_confirmed_tools(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Add a confirmation point to every step whose tool requires one"""
        gated = {}
        for step in plan.steps:
            tool = self.registry.get(step.tool)
            if tool is not None and tool.requires_confirmation and step.id not in plan.confirmation_points:
                gated[step.id] = f"Allow '{step.name}' to run {step.tool}?"
        if not gated:
            return plan
        logger.info(f"Confirmation required by tool for step(s): {', '.join(gated)}")
        return replace(plan, confirmation_points={**plan.confirmation_points, **gated})

    def _sequential(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Chain steps in topological order so at most one is ready at a time"""
        chained = []
        previous: Optional[str] = None
        for step in plan.topological_order():
            if previous is not None and previous not in step.depends_on:
                step = replace(step, depends_on=step.depends_on + (previous,))
            chained.append(step)
            previous = step.id
        return replace(plan, steps=tuple(chained))
