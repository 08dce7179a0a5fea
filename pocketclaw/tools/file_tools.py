"""Group workspace file tools."""

from __future__ import annotations

from typing import Any

from pocketclaw.storage import GroupWorkspace
from pocketclaw.tools.base import Tool, ToolName


class ReadFileTool(Tool):
    name = ToolName.READ_FILE
    description = "Read a text file from the group workspace."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to the workspace root."},
        },
        "required": ["path"],
        "additionalProperties": False,
    }

    def __init__(self, workspace: GroupWorkspace) -> None:
        self._workspace = workspace

    async def run(self, group_id: str, **kwargs: Any) -> str:
        return self._workspace.read_file(group_id, kwargs["path"])


class WriteFileTool(Tool):
    name = ToolName.WRITE_FILE
    description = "Write a text file to the group workspace, creating parent directories."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to the workspace root."},
            "content": {"type": "string", "description": "Full file content."},
        },
        "required": ["path", "content"],
        "additionalProperties": False,
    }

    def __init__(self, workspace: GroupWorkspace) -> None:
        self._workspace = workspace

    async def run(self, group_id: str, **kwargs: Any) -> str:
        path: str = kwargs["path"]
        content: str = kwargs["content"]
        self._workspace.write_file(group_id, path, content)
        return f"Written {len(content)} bytes to {path}"


class ListFilesTool(Tool):
    name = ToolName.LIST_FILES
    description = "List files in a workspace directory. Directories end with '/'."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory to list (default workspace root)."},
        },
        "additionalProperties": False,
    }

    def __init__(self, workspace: GroupWorkspace) -> None:
        self._workspace = workspace

    async def run(self, group_id: str, **kwargs: Any) -> str:
        entries = self._workspace.list_files(group_id, kwargs.get("path") or ".")
        return "\n".join(entries) if entries else "(empty directory)"
