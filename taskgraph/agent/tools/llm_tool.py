"""
LLM Generate Tool — Wraps a model client as an agent tool.

This is the general-purpose tool for text generation, analysis,
summarization and reasoning, and the default target of fallback plans.
"""
from typing import Any
import json

from taskgraph.agent.tool_registry import Tool, ToolResult, ToolParameter, ToolCategory
from taskgraph.llm.base import ModelClient


class LLMGenerateTool(Tool):
    """Text generation through the configured model client"""

    def __init__(self, model_client: ModelClient):
        super().__init__(
            name="llm_generate",
            description=(
                "Generate text using an LLM. Use for answering questions, writing, "
                "analysis, coding, reasoning, summarization, and any general-purpose "
                "text generation task."
            ),
            category=ToolCategory.LLM,
            parameters=[
                ToolParameter(
                    name="prompt",
                    type="string",
                    description="The prompt or instruction to send to the LLM",
                    required=True,
                ),
                ToolParameter(
                    name="system",
                    type="string",
                    description="Optional system instruction",
                    required=False,
                ),
                ToolParameter(
                    name="temperature",
                    type="number",
                    description="Sampling temperature 0.0-1.0. Lower = more focused, higher = more creative.",
                    required=False,
                    default=0.7,
                ),
                ToolParameter(
                    name="output_format",
                    type="string",
                    description="'json' parses the answer into structured data",
                    required=False,
                    default="text",
                    enum=["text", "json"],
                ),
            ],
        )
        self.client = model_client

    async def execute(self, **kwargs) -> ToolResult:
        """Execute LLM generation"""
        messages = []
        if kwargs.get("system"):
            messages.append({"role": "system", "content": kwargs["system"]})
        messages.append({"role": "user", "content": kwargs["prompt"]})

        text = await self.client.chat(messages, temperature=float(kwargs.get("temperature", 0.7)))

        output: Any = text
        if kwargs.get("output_format") == "json":
            try:
                output = json.loads(text)
            except json.JSONDecodeError as e:
                return ToolResult(success=False, error=f"Model answer is not valid JSON: {e}")

        return ToolResult(success=True, output=output, tokens_used=len(text) // 4)
