"""Scheduled task creation tool."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from croniter import croniter

from pocketclaw.models import Task, new_id, now_ms
from pocketclaw.tools.base import Tool, ToolName

TaskSink = Callable[[Task], Awaitable[None]]


class CreateTaskTool(Tool):
    """Create a recurring task; persistence happens outside the worker."""

    name = ToolName.CREATE_TASK
    description = (
        "Schedule a recurring task with a 5-field cron expression "
        "(minute hour day-of-month month day-of-week). When it fires, the prompt "
        "is sent to you as a message in this conversation."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "schedule": {"type": "string", "description": "Cron expression, e.g. '0 9 * * 1-5'."},
            "prompt": {"type": "string", "description": "What to do when the task fires."},
        },
        "required": ["schedule", "prompt"],
        "additionalProperties": False,
    }

    def __init__(self, on_created: TaskSink) -> None:
        self._on_created = on_created

    async def run(self, group_id: str, **kwargs: Any) -> str:
        schedule = str(kwargs["schedule"]).strip()
        prompt = str(kwargs["prompt"])
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression: {schedule!r}")

        task = Task(
            id=new_id(),
            group_id=group_id,
            schedule=schedule,
            prompt=prompt,
            enabled=True,
            last_run=None,
            created_at=now_ms(),
        )
        await self._on_created(task)
        return f"Task created successfully.\nSchedule: {task.schedule}\nPrompt: {task.prompt}"
