"""Tests for the /command dispatch system."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pocketclaw.commands import HELP_TEXT, CommandDispatcher, parse_command
from pocketclaw.config import ConfigurationError
from pocketclaw.db import Database
from pocketclaw.models import ChannelType, InboundMessage, Task

GROUP = "tg:42"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _msg(text: str, group_id: str = GROUP) -> InboundMessage:
    return InboundMessage(
        id="m1",
        group_id=group_id,
        sender="Ada",
        content=text,
        timestamp=1,
        channel=ChannelType.TELEGRAM,
    )


def _coordinator() -> MagicMock:
    coordinator = MagicMock()
    coordinator.new_session = AsyncMock()
    coordinator.compact_context = AsyncMock()
    coordinator.cancel = AsyncMock(return_value=True)
    coordinator.set_model = AsyncMock()
    coordinator.model = "claude-sonnet-4-6"
    coordinator.provider = "anthropic"
    coordinator.status_lines.return_value = ["State: idle", "Model: claude-sonnet-4-6"]
    return coordinator


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "commands.db")
    database.initialize()
    return database


@pytest.fixture
def coordinator():
    return _coordinator()


@pytest.fixture
def dispatcher(coordinator, db):
    return CommandDispatcher(coordinator, db)


# ===========================================================================
# parse_command
# ===========================================================================


class TestParseCommand:
    def test_regular_text_returns_none(self):
        assert parse_command("hello world") is None

    def test_empty_string_returns_none(self):
        assert parse_command("") is None

    def test_slash_alone_returns_none(self):
        assert parse_command("/") is None
        assert parse_command("/   ") is None

    def test_command_with_no_args(self):
        assert parse_command("/status") == ("status", [])

    def test_command_is_lowercased(self):
        assert parse_command("/STATUS") == ("status", [])

    def test_command_with_args(self):
        assert parse_command("  /pause  abc123 ") == ("pause", ["abc123"])

    def test_bot_suffix_is_stripped(self):
        assert parse_command("/model@pocket_bot claude-x") == ("model", ["claude-x"])

    def test_slash_later_in_text_is_not_a_command(self):
        assert parse_command("what is 1/2") is None


# ===========================================================================
# CommandDispatcher
# ===========================================================================


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_non_command_returns_none(self, dispatcher):
        assert await dispatcher.dispatch(_msg("@Andy hello")) is None

    @pytest.mark.asyncio
    async def test_unknown_command_returns_none(self, dispatcher):
        assert await dispatcher.dispatch(_msg("/weather")) is None

    @pytest.mark.asyncio
    async def test_new_clears_session(self, dispatcher, coordinator):
        reply = await dispatcher.dispatch(_msg("/new"))

        assert reply == "New session started. Conversation history cleared."
        coordinator.new_session.assert_awaited_once_with(GROUP)

    @pytest.mark.asyncio
    async def test_compact_requests_compaction(self, dispatcher, coordinator):
        reply = await dispatcher.dispatch(_msg("/compact"))

        assert reply == "Compacting context..."
        coordinator.compact_context.assert_awaited_once_with(GROUP)

    @pytest.mark.asyncio
    async def test_compact_reports_configuration_error(self, dispatcher, coordinator):
        coordinator.compact_context.side_effect = ConfigurationError("Cannot compact while processing.")

        reply = await dispatcher.dispatch(_msg("/compact"))

        assert reply == "⚠️ Cannot compact while processing."

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_response(self, dispatcher, coordinator):
        assert await dispatcher.dispatch(_msg("/stop")) == "Stopping the current response."
        coordinator.cancel.assert_awaited_once_with(GROUP)

        coordinator.cancel.return_value = False
        assert await dispatcher.dispatch(_msg("/stop")) == "Nothing to stop."

    @pytest.mark.asyncio
    async def test_help_and_status(self, dispatcher):
        assert await dispatcher.dispatch(_msg("/help")) == HELP_TEXT
        assert await dispatcher.dispatch(_msg("/status")) == "State: idle\nModel: claude-sonnet-4-6"


class TestModelCommand:
    @pytest.mark.asyncio
    async def test_shows_current_model(self, dispatcher):
        reply = await dispatcher.dispatch(_msg("/model"))

        assert reply == "Model: claude-sonnet-4-6 (provider: anthropic)"

    @pytest.mark.asyncio
    async def test_sets_model(self, dispatcher, coordinator):
        async def set_model(name: str) -> None:
            coordinator.model = name

        coordinator.set_model.side_effect = set_model

        reply = await dispatcher.dispatch(_msg("/model claude-haiku"))

        assert reply == "Model set to claude-haiku."
        coordinator.set_model.assert_awaited_once_with("claude-haiku")


class TestTaskCommands:
    @pytest.mark.asyncio
    async def test_tasks_empty(self, dispatcher):
        assert await dispatcher.dispatch(_msg("/tasks")) == "No scheduled tasks."

    @pytest.mark.asyncio
    async def test_tasks_lists_only_this_chat(self, dispatcher, db):
        db.save_task(Task(id="a1", group_id=GROUP, schedule="0 9 * * *", prompt="news", created_at=1))
        db.save_task(Task(id="b2", group_id=GROUP, schedule="*/5 * * * *", prompt="ping", enabled=False, created_at=2))
        db.save_task(Task(id="c3", group_id="tg:other", schedule="0 0 * * *", prompt="secret", created_at=3))

        reply = await dispatcher.dispatch(_msg("/tasks"))

        assert reply.splitlines() == [
            "Scheduled tasks:",
            "a1 [active] 0 9 * * *: news",
            "b2 [paused] */5 * * * *: ping",
        ]

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, dispatcher, db):
        db.save_task(Task(id="a1", group_id=GROUP, schedule="0 9 * * *", prompt="news", created_at=1))

        assert await dispatcher.dispatch(_msg("/pause a1")) == "Task a1 paused."
        assert db.get_task("a1").enabled is False

        assert await dispatcher.dispatch(_msg("/resume a1")) == "Task a1 resumed."
        assert db.get_task("a1").enabled is True

    @pytest.mark.asyncio
    async def test_toggle_requires_id(self, dispatcher):
        assert await dispatcher.dispatch(_msg("/pause")) == "Usage: /pause <task id>"
        assert await dispatcher.dispatch(_msg("/resume")) == "Usage: /resume <task id>"

    @pytest.mark.asyncio
    async def test_cannot_touch_another_chats_task(self, dispatcher, db):
        db.save_task(Task(id="c3", group_id="tg:other", schedule="0 0 * * *", prompt="secret", created_at=3))

        assert await dispatcher.dispatch(_msg("/pause c3")) == "No task with id c3 in this chat."
        assert await dispatcher.dispatch(_msg("/deltask c3")) == "No task with id c3 in this chat."
        assert db.get_task("c3").enabled is True

    @pytest.mark.asyncio
    async def test_deltask(self, dispatcher, db):
        db.save_task(Task(id="a1", group_id=GROUP, schedule="0 9 * * *", prompt="news", created_at=1))

        assert await dispatcher.dispatch(_msg("/deltask a1")) == "Task a1 deleted."
        assert db.get_task("a1") is None
        assert await dispatcher.dispatch(_msg("/deltask")) == "Usage: /deltask <task id>"
