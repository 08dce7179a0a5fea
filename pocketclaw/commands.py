"""Command dispatcher for /-prefixed chat messages.

Commands are answered directly and never reach the model or the message log.
An unrecognised /command returns None, letting it fall through to the queue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pocketclaw.config import ConfigurationError
from pocketclaw.models import InboundMessage

if TYPE_CHECKING:
    from pocketclaw.coordinator import Coordinator
    from pocketclaw.db import Database

LOGGER = logging.getLogger(__name__)

HELP_TEXT = "\n".join(
    [
        "Commands:",
        "/new - start a new session (clears this chat's history)",
        "/compact - summarize the history to save tokens",
        "/stop - cancel the response in progress",
        "/tasks - list scheduled tasks for this chat",
        "/pause <id> - pause a scheduled task",
        "/resume <id> - resume a paused task",
        "/deltask <id> - delete a scheduled task",
        "/model [name] - show or change the model",
        "/status - show assistant status",
        "/help - show this help",
    ]
)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    # Telegram appends the bot name in groups: /status@my_bot
    command = parts[0].split("@", 1)[0].lower()
    if not command:
        return None
    return command, parts[1:]


class CommandDispatcher:
    """Routes /-prefixed messages to coordinator operations, bypassing the model.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(self, coordinator: Coordinator, db: Database) -> None:
        self._coordinator = coordinator
        self._db = db

    async def dispatch(self, message: InboundMessage) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(message.content)
        if parsed is None:
            return None
        command, args = parsed
        group_id = message.group_id
        LOGGER.info("Command dispatch: command=%r args=%r group=%s", command, args, group_id)

        if command == "new":
            await self._coordinator.new_session(group_id)
            return "New session started. Conversation history cleared."
        if command == "compact":
            return await self._handle_compact(group_id)
        if command == "stop":
            if await self._coordinator.cancel(group_id):
                return "Stopping the current response."
            return "Nothing to stop."
        if command == "tasks":
            return self._handle_tasks(group_id)
        if command in ("pause", "resume"):
            return self._handle_toggle(group_id, args, enabled=command == "resume")
        if command == "deltask":
            return self._handle_delete(group_id, args)
        if command == "model":
            return await self._handle_model(args)
        if command == "status":
            return "\n".join(self._coordinator.status_lines())
        if command == "help":
            return HELP_TEXT
        return None

    async def _handle_compact(self, group_id: str) -> str:
        try:
            await self._coordinator.compact_context(group_id)
        except ConfigurationError as exc:
            return f"⚠️ {exc}"
        return "Compacting context..."

    def _handle_tasks(self, group_id: str) -> str:
        tasks = self._db.list_group_tasks(group_id)
        if not tasks:
            return "No scheduled tasks."
        lines = ["Scheduled tasks:"]
        for task in tasks:
            status = "active" if task.enabled else "paused"
            lines.append(f"{task.id} [{status}] {task.schedule}: {task.prompt}")
        return "\n".join(lines)

    def _handle_toggle(self, group_id: str, args: list[str], enabled: bool) -> str:
        verb = "resume" if enabled else "pause"
        if not args:
            return f"Usage: /{verb} <task id>"
        task = self._db.get_task(args[0])
        if task is None or task.group_id != group_id:
            return f"No task with id {args[0]} in this chat."
        self._db.set_task_enabled(task.id, enabled)
        return f"Task {task.id} {'resumed' if enabled else 'paused'}."

    def _handle_delete(self, group_id: str, args: list[str]) -> str:
        if not args:
            return "Usage: /deltask <task id>"
        task = self._db.get_task(args[0])
        if task is None or task.group_id != group_id:
            return f"No task with id {args[0]} in this chat."
        self._db.delete_task(task.id)
        return f"Task {task.id} deleted."

    async def _handle_model(self, args: list[str]) -> str:
        if not args:
            return f"Model: {self._coordinator.model} (provider: {self._coordinator.provider})"
        await self._coordinator.set_model(args[0])
        return f"Model set to {self._coordinator.model}."
