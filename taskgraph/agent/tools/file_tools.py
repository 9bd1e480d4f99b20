"""
File tools - read, write and list files inside a workspace directory
"""
from typing import Optional
from pathlib import Path
import os

import aiofiles
import aiofiles.os

from taskgraph.agent.tool_registry import Tool, ToolParameter, ToolCategory


class _WorkspaceTool(Tool):
    """Resolves relative paths against a root and refuses to escape it"""

    def __init__(self, workspace_dir: Optional[str], **kwargs):
        super().__init__(category=ToolCategory.FILE_SYSTEM, **kwargs)
        self.workspace = Path(workspace_dir or ".").resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.workspace / path).resolve()
        if target != self.workspace and self.workspace not in target.parents:
            raise PermissionError(f"Path '{path}' is outside the workspace")
        return target


class FileReadTool(_WorkspaceTool):

    def __init__(self, workspace_dir: Optional[str] = None):
        super().__init__(
            workspace_dir,
            name="file_read",
            description="Read a text file from the workspace and return its content",
            parameters=[
                ToolParameter(name="path", type="string", description="File path relative to the workspace"),
                ToolParameter(
                    name="encoding", type="string", description="Text encoding",
                    required=False, default="utf-8",
                ),
            ],
        )

    async def execute(self, **kwargs) -> str:
        async with aiofiles.open(self._resolve(kwargs["path"]), "r", encoding=kwargs["encoding"]) as f:
            return await f.read()


class FileWriteTool(_WorkspaceTool):

    def __init__(self, workspace_dir: Optional[str] = None):
        super().__init__(
            workspace_dir,
            name="file_write",
            description="Write text to a file in the workspace, creating parent directories",
            parameters=[
                ToolParameter(name="path", type="string", description="File path relative to the workspace"),
                ToolParameter(name="content", type="string", description="Text to write"),
                ToolParameter(
                    name="append", type="boolean", description="Append instead of overwriting",
                    required=False, default=False,
                ),
            ],
            requires_confirmation=True,
        )

    async def execute(self, **kwargs) -> dict:
        target = self._resolve(kwargs["path"])
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        mode = "a" if kwargs.get("append") else "w"
        async with aiofiles.open(target, mode, encoding="utf-8") as f:
            await f.write(kwargs["content"])
        return {"path": str(target.relative_to(self.workspace)), "bytes": len(kwargs["content"].encode("utf-8"))}


class FileListTool(_WorkspaceTool):

    def __init__(self, workspace_dir: Optional[str] = None):
        super().__init__(
            workspace_dir,
            name="file_list",
            description="List the entries of a workspace directory",
            parameters=[
                ToolParameter(
                    name="path", type="string", description="Directory relative to the workspace",
                    required=False, default=".",
                ),
            ],
        )

    async def execute(self, **kwargs) -> list:
        target = self._resolve(kwargs["path"])
        names = await aiofiles.os.listdir(target)
        return [
            {"name": name, "is_dir": os.path.isdir(target / name)}
            for name in sorted(names)
        ]
