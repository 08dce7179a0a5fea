"""Application entrypoint: terminal chat on the local channel, plus Telegram when configured."""

from __future__ import annotations

import asyncio
import logging
import sys

from pocketclaw.channels.local import LocalChannel
from pocketclaw.channels.telegram import TelegramChannel
from pocketclaw.config import DEFAULT_GROUP_ID, load_settings
from pocketclaw.coordinator import Coordinator
from pocketclaw.db import Database
from pocketclaw.events import ToolActivity
from pocketclaw.storage import GroupWorkspace
from pocketclaw.worker import AgentWorker

LOGGER = logging.getLogger(__name__)

QUIT_COMMANDS = {"/quit", "/exit"}


async def run() -> None:
    """Initialize app layers and run the terminal loop until EOF or /quit."""

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = Database(settings.database_path)
    db.initialize()
    workspace = GroupWorkspace(settings.workspace_root)

    local = LocalChannel()
    telegram = TelegramChannel(poll_timeout_seconds=settings.telegram_poll_timeout_seconds)
    worker = AgentWorker(workspace=workspace, request_timeout_seconds=settings.request_timeout_seconds)
    coordinator = Coordinator(
        settings=settings,
        db=db,
        workspace=workspace,
        worker=worker,
        local=local,
        telegram=telegram,
    )

    def show_reply(group_id: str, text: str) -> None:
        if group_id == DEFAULT_GROUP_ID:
            print(f"\n{coordinator.assistant_name}: {text}\n", flush=True)

    typing_shown = False

    def show_typing(group_id: str, typing: bool) -> None:
        nonlocal typing_shown
        if group_id != DEFAULT_GROUP_ID:
            return
        if typing and not typing_shown:
            print(f"  {coordinator.assistant_name} is thinking...", flush=True)
        typing_shown = typing

    def show_tool(event: ToolActivity) -> None:
        if event.group_id == DEFAULT_GROUP_ID and event.status == "running":
            print(f"  [{event.tool}]", flush=True)

    local.on_display(show_reply)
    local.on_typing(show_typing)
    coordinator.events.subscribe(ToolActivity, show_tool)

    await coordinator.start()
    print(f"Chatting with {coordinator.assistant_name}. /help for commands, Ctrl-D or /quit to exit.")
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            if text in QUIT_COMMANDS:
                break
            await local.submit(text)
    finally:
        await coordinator.shutdown()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
