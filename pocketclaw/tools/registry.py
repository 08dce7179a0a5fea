"""Closed dispatch table from tool name to implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError, create_model

from pocketclaw.storage import GroupWorkspace
from pocketclaw.tools.base import Tool, ToolName
from pocketclaw.tools.bash_tool import BashTool
from pocketclaw.tools.calculator_tool import CalculatorTool
from pocketclaw.tools.fetch_url_tool import FetchUrlTool
from pocketclaw.tools.file_tools import ListFilesTool, ReadFileTool, WriteFileTool
from pocketclaw.tools.memory_tool import UpdateMemoryTool
from pocketclaw.tools.task_tool import CreateTaskTool, TaskSink

LOGGER = logging.getLogger(__name__)


class ToolExecutor:
    """Executes agent tool calls and turns every outcome into a string.

    The executor must be given exactly one implementation per ``ToolName``;
    adding a member to the enum without an implementation fails at startup.
    """

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[ToolName, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Tool registered twice: {tool.name.value}")
            self._tools[ToolName(tool.name)] = tool
        missing = [name.value for name in ToolName if name not in self._tools]
        if missing:
            raise ValueError(f"Tool executor missing implementations: {', '.join(missing)}")

    def definitions(self) -> list[dict[str, Any]]:
        """Provider-neutral tool catalogue."""

        return [
            {
                "name": tool.name.value,
                "description": tool.description,
                "input_schema": tool.parameters_schema,
            }
            for tool in self._tools.values()
        ]

    async def execute(self, name: str, arguments: dict[str, Any], group_id: str) -> str:
        try:
            tool_name = ToolName(name)
        except ValueError:
            return f"Unknown tool: {name}"

        tool = self._tools[tool_name]
        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
            result = await tool.run(group_id=group_id, **validated)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s failed for group %s: %s", name, group_id, exc)
            return f"Tool error ({name}): {exc}"
        return result if isinstance(result, str) else json.dumps(result)


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        default = ... if name in required else None
        fields[name] = (typ if name in required else typ | None, default)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)


def build_tool_executor(workspace: GroupWorkspace, on_task_created: TaskSink) -> ToolExecutor:
    """Wire the full tool set against a workspace and a task sink."""

    return ToolExecutor(
        [
            BashTool(workspace),
            ReadFileTool(workspace),
            WriteFileTool(workspace),
            ListFilesTool(workspace),
            FetchUrlTool(),
            UpdateMemoryTool(workspace),
            CreateTaskTool(on_task_created),
            CalculatorTool(),
        ]
    )
