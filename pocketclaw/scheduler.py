"""Async scheduler for recurring cron prompts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from croniter import croniter

from pocketclaw.config import SCHEDULED_TASK_MARKER
from pocketclaw.db import Database
from pocketclaw.models import Task

LOGGER = logging.getLogger(__name__)

ScheduledHandler = Callable[[str, str], Awaitable[None]]


class TaskScheduler:
    """Evaluates enabled tasks on a fixed tick and dispatches due ones via callback."""

    def __init__(
        self,
        db: Database,
        handler: ScheduledHandler,
        poll_interval_seconds: float = 60.0,
    ) -> None:
        self._db = db
        self._handler = handler
        self._poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()

    async def run_forever(self) -> None:
        """Run scheduler loop until stop() is called."""

        LOGGER.info("Task scheduler started (every %ss)", self._poll_interval_seconds)
        while not self._stop_event.is_set():
            await self.tick(datetime.now().astimezone())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self, now: datetime) -> list[Task]:
        """Dispatch every enabled task due at ``now``. Returns the dispatched tasks."""

        tick_ms = int(now.timestamp() * 1000)
        minute_start_ms = int(now.replace(second=0, microsecond=0).timestamp() * 1000)
        dispatched: list[Task] = []
        for task in self._db.get_enabled_tasks():
            if not is_due(task, now, minute_start_ms):
                continue
            LOGGER.info("Running scheduled task %s for %s", task.id, task.group_id)
            try:
                await self._handler(task.group_id, f"{SCHEDULED_TASK_MARKER} {task.prompt}")
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduled task %s failed to dispatch", task.id)
                continue
            self._db.update_task_last_run(task.id, tick_ms)
            dispatched.append(task)
        return dispatched

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()


def is_due(task: Task, now: datetime, minute_start_ms: int) -> bool:
    """True when the schedule matches ``now`` and the task has not run this minute."""

    if task.last_run is not None and task.last_run >= minute_start_ms:
        return False
    try:
        return bool(croniter.match(task.schedule, now))
    except (ValueError, KeyError) as exc:
        LOGGER.warning("Skipping task %s with invalid schedule %r: %s", task.id, task.schedule, exc)
        return False
