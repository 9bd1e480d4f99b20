"""Built-in tools package for the agent"""
from typing import Optional
import logging

from taskgraph.agent.tool_registry import ToolRegistry
from taskgraph.agent.tools.llm_tool import LLMGenerateTool
from taskgraph.agent.tools.file_tools import FileReadTool, FileWriteTool, FileListTool
from taskgraph.agent.tools.web_tools import WebFetchTool
from taskgraph.agent.tools.data_tools import JSONParseTool
from taskgraph.llm.base import ModelClient

logger = logging.getLogger(__name__)


def build_default_registry(
    model_client: Optional[ModelClient] = None,
    workspace_dir: Optional[str] = None,
) -> ToolRegistry:
    """Fresh registry with every built-in tool; llm_generate only when a model client is given"""
    registry = ToolRegistry()
    if model_client is not None:
        registry.register(LLMGenerateTool(model_client))
    registry.register(FileReadTool(workspace_dir))
    registry.register(FileWriteTool(workspace_dir))
    registry.register(FileListTool(workspace_dir))
    registry.register(WebFetchTool())
    registry.register(JSONParseTool())

    logger.info(f"{registry.count()} built-in tools registered")
    return registry


__all__ = [
    "build_default_registry",
    "LLMGenerateTool",
    "FileReadTool", "FileWriteTool", "FileListTool",
    "WebFetchTool",
    "JSONParseTool",
]
