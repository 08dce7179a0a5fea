"""Group memory file tool."""

from __future__ import annotations

from typing import Any

from pocketclaw.config import MEMORY_FILE
from pocketclaw.storage import GroupWorkspace
from pocketclaw.tools.base import Tool, ToolName


class UpdateMemoryTool(Tool):
    """Overwrite the group's persistent memory file."""

    name = ToolName.UPDATE_MEMORY
    description = (
        f"Replace the contents of {MEMORY_FILE}, the group's persistent memory. "
        "It is loaded into every conversation, so keep it concise and include "
        "everything worth remembering (preferences, ongoing projects, facts)."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "Full new memory content (markdown)."},
        },
        "required": ["content"],
        "additionalProperties": False,
    }

    def __init__(self, workspace: GroupWorkspace) -> None:
        self._workspace = workspace

    async def run(self, group_id: str, **kwargs: Any) -> str:
        self._workspace.write_memory(group_id, kwargs["content"])
        return "Memory updated successfully."
