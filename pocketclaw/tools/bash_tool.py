"""Shell command execution inside the group workspace."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from pocketclaw.storage import GroupWorkspace
from pocketclaw.tools.base import Tool, ToolName

DEFAULT_TIMEOUT_SECONDS = 30
MAX_TIMEOUT_SECONDS = 120


class BashTool(Tool):
    """Run a shell command with the group directory as working directory."""

    name = ToolName.BASH
    description = (
        "Execute a shell command in the group workspace. Use for scripts, text "
        "processing and inspecting files. Returns stdout, stderr and the exit code."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to run."},
            "timeout": {
                "type": "integer",
                "description": f"Timeout in seconds (default {DEFAULT_TIMEOUT_SECONDS}, max {MAX_TIMEOUT_SECONDS}).",
            },
        },
        "required": ["command"],
        "additionalProperties": False,
    }

    def __init__(self, workspace: GroupWorkspace) -> None:
        self._workspace = workspace

    async def run(self, group_id: str, **kwargs: Any) -> str:
        command = str(kwargs["command"])
        timeout = min(int(kwargs.get("timeout") or DEFAULT_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS)

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=self._workspace.group_dir(group_id),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.communicate()
            return f"Command timed out after {timeout}s"
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            raise

        return format_shell_output(
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
            process.returncode or 0,
        )


def format_shell_output(stdout: str, stderr: str, exit_code: int) -> str:
    output = stdout
    if stderr:
        output += ("\n" if output else "") + stderr
    if exit_code != 0 and not stderr:
        output += f"\n[exit code: {exit_code}]"
    return output or "(no output)"
