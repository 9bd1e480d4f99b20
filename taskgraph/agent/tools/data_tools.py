"""
Data tools - JSON parsing and field extraction
"""
import json

from taskgraph.agent.references import StepReference, lookup, parse_path
from taskgraph.agent.tool_registry import Tool, ToolParameter, ToolCategory


class JSONParseTool(Tool):

    def __init__(self):
        super().__init__(
            name="json_parse",
            description="Parse a JSON string, optionally returning only the value at a path like 'items[0].name'",
            category=ToolCategory.DATA,
            parameters=[
                ToolParameter(name="text", type="string", description="JSON text"),
                ToolParameter(name="path", type="string", description="Path into the parsed value", required=False),
            ],
        )

    async def execute(self, **kwargs):
        data = json.loads(kwargs["text"])
        if not kwargs.get("path"):
            return data
        ref = StepReference(step_id="value", path=parse_path(kwargs["path"]))
        return lookup(ref, {"value": data}, {})
