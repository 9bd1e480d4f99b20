"""
Tool Registry — Named collection of executable tools

Each tool is a self-describing, executable unit that the planner
can discover and the executor can invoke. The registry validates
arguments against the tool's declared parameters before calling it
and normalizes every outcome into a ToolResult.
"""
from typing import Dict, Any, List, Optional, Callable
from dataclasses import dataclass, field
from enum import Enum
import inspect
import logging
import time
import traceback

logger = logging.getLogger(__name__)


class ToolCategory(str, Enum):
    """Categories for tool classification"""
    LLM = "llm"
    FILE_SYSTEM = "file_system"
    WEB = "web"
    DATA = "data"
    SYSTEM = "system"
    CUSTOM = "custom"


@dataclass
class ToolResult:
    """Result returned by a tool execution"""
    success: bool
    output: Any = None
    error: Optional[str] = None
    latency_ms: int = 0
    tokens_used: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.metadata.get("retryable", True)


@dataclass
class ToolParameter:
    """Describes a single tool parameter"""
    name: str
    type: str  # "string", "number", "integer", "boolean", "object", "array"
    description: str
    required: bool = True
    default: Any = None
    enum: Optional[List[Any]] = None


_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, (list, tuple)),
}


class Tool:
    """
    Base class for all agent tools.

    Subclass this and implement `execute()` to create a new tool.
    The planner uses `name`, `description`, and `parameters`
    to decide when and how to invoke the tool.
    """

    def __init__(
        self,
        name: str,
        description: str,
        category: ToolCategory = ToolCategory.CUSTOM,
        parameters: Optional[List[ToolParameter]] = None,
        requires_confirmation: bool = False,
    ):
        self.name = name
        self.description = description
        self.category = category
        self.parameters = parameters or []
        self.requires_confirmation = requires_confirmation

    async def execute(self, **kwargs) -> Any:
        """
        Execute the tool with given arguments.
        Must be overridden by subclasses. May return a ToolResult or a
        plain value; raising signals failure.
        """
        raise NotImplementedError(f"Tool '{self.name}' must implement execute()")

    def validate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check arguments against the declared parameters and fill defaults.

        Returns:
            A new argument dict with defaults applied

        Raises:
            ValueError: on a missing required argument, a wrong type or a
                value outside the parameter's enum
        """
        validated = dict(args)
        for p in self.parameters:
            if p.name not in validated or validated[p.name] is None:
                if p.required:
                    raise ValueError(f"Missing required parameter '{p.name}'")
                if p.default is not None:
                    validated[p.name] = p.default
                continue

            value = validated[p.name]
            check = _TYPE_CHECKS.get(p.type)
            if check and not check(value):
                raise ValueError(
                    f"Parameter '{p.name}' should be {p.type}, got {type(value).__name__}"
                )
            if p.enum and value not in p.enum:
                raise ValueError(f"Parameter '{p.name}' must be one of {p.enum}")
        return validated

    def to_schema(self) -> Dict[str, Any]:
        """
        Export tool as a JSON-serializable schema for LLM consumption.
        The planner prompt includes this so the model knows what tools exist.
        """
        params = {}
        required = []
        for p in self.parameters:
            param_schema = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                param_schema["enum"] = p.enum
            if p.default is not None:
                param_schema["default"] = p.default
            params[p.name] = param_schema
            if p.required:
                required.append(p.name)

        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "requires_confirmation": self.requires_confirmation,
            "parameters": {
                "type": "object",
                "properties": params,
                "required": required,
            },
        }


class FunctionTool(Tool):
    """
    Tool backed by a plain function or coroutine function.

    Usage:
        async def add(a, b):
            return a + b

        registry.register(FunctionTool("add", "Add two numbers", add, parameters=[...]))
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Any],
        parameters: Optional[List[ToolParameter]] = None,
        category: ToolCategory = ToolCategory.CUSTOM,
        requires_confirmation: bool = False,
    ):
        super().__init__(
            name=name,
            description=description,
            category=category,
            parameters=parameters,
            requires_confirmation=requires_confirmation,
        )
        self.func = func

    async def execute(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


class ToolRegistry:
    """
    Registry of tools available to one agent.

    Usage:
        registry = ToolRegistry()
        registry.register(MyTool())
        result = await registry.execute("my_tool", arg1="value")
    """

    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool in the registry"""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name} [{tool.category.value}]")

    def unregister(self, name: str) -> None:
        """Remove a tool from the registry"""
        if name in self._tools:
            del self._tools[name]

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name"""
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Dict[str, Any]]:
        """List all tools as schemas (for LLM consumption)"""
        return [tool.to_schema() for tool in self._tools.values()]

    def list_names(self) -> List[str]:
        """List all registered tool names"""
        return list(self._tools.keys())

    def count(self) -> int:
        """Number of registered tools"""
        return len(self._tools)

    async def execute(self, tool_name: str, **kwargs) -> ToolResult:
        """
        Execute a tool by name with given arguments.
        Handles validation, timing, error catching, and result normalization.
        Failures that retrying cannot fix are marked retryable=False.
        """
        tool = self._tools.get(tool_name)
        if not tool:
            return ToolResult(
                success=False,
                error=f"Tool '{tool_name}' not found. Available: {self.list_names()}",
                metadata={"retryable": False},
            )

        try:
            args = tool.validate(kwargs)
        except ValueError as e:
            return ToolResult(
                success=False,
                error=f"Invalid arguments for '{tool_name}': {e}",
                metadata={"retryable": False},
            )

        start_time = time.time()
        try:
            result = await tool.execute(**args)
            if not isinstance(result, ToolResult):
                result = ToolResult(success=True, output=result)
            result.latency_ms = int((time.time() - start_time) * 1000)
            return result
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            return ToolResult(
                success=False,
                error=f"{type(e).__name__}: {str(e)}",
                latency_ms=latency_ms,
                metadata={"traceback": traceback.format_exc()},
            )
