"""Tests for the coordinator state machine and single-flight queue."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pocketclaw.channels.base import Channel
from pocketclaw.config import ConfigurationError, Settings
from pocketclaw.coordinator import COMPACTED_PREFIX, ERROR_PREFIX, Coordinator, build_system_prompt
from pocketclaw.db import Database, build_conversation_messages
from pocketclaw.envelopes import (
    CancelRequest,
    CompactDoneEvent,
    CompactRequest,
    ErrorEvent,
    InvokeRequest,
    ResponseEvent,
    TaskCreatedEvent,
    ThinkingLogEvent,
    TokenUsageEvent,
    ToolActivityEvent,
    TypingEvent,
)
from pocketclaw.events import (
    ContextCompacted,
    ErrorRaised,
    MessageStored,
    SessionReset,
    StateChanged,
    ThinkingLogged,
    TokenUsageReported,
    ToolActivity,
)
from pocketclaw.llm.base import LLMProvider, Transcript
from pocketclaw.models import (
    ChannelType,
    InboundMessage,
    LLMResponse,
    LLMToolCall,
    OrchestratorState,
    Task,
    ThinkingLogEntry,
    TokenUsage,
    now_ms,
)
from pocketclaw.storage import GroupWorkspace
from pocketclaw.worker import AgentWorker

LOCAL = "local:main"


class RecordingChannel(Channel):
    def __init__(self, channel_type: ChannelType, max_length: int = 4096) -> None:
        super().__init__()
        self.type = channel_type
        self.max_length = max_length
        self.running = False
        self.sent: list[tuple[str, str]] = []
        self.typing: list[tuple[str, bool]] = []
        self.delivered = asyncio.Event()

    def configure(self, token: str, chat_ids: list[str]) -> None:
        self.configured_with = (token, chat_ids)

    def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def send(self, group_id: str, text: str) -> None:
        self.sent.append((group_id, text))
        self.delivered.set()

    async def set_typing(self, group_id: str, typing: bool) -> None:
        self.typing.append((group_id, typing))


class FakeWorker:
    """Records inbound envelopes; replies are injected by the test."""

    def __init__(self) -> None:
        self.outbox: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[Any] = []
        self.fail_next = False
        self.started = False

    def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send(self, envelope: Any) -> None:
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("worker unavailable")
        self.sent.append(envelope)


def _settings(tmp_path, api_key: str = "sk-test", **extra: Any) -> Settings:
    values: dict[str, Any] = {
        "POCKETCLAW_PROVIDER": "anthropic",
        "ANTHROPIC_API_KEY": api_key,
        "ANTHROPIC_BASE_URL": "https://api.anthropic.com",
        "OPENAI_API_KEY": "",
        "OPENAI_BASE_URL": "http://localhost:11434/v1",
        "TELEGRAM_BOT_TOKEN": "",
        "TELEGRAM_CHAT_IDS": "",
        "DATABASE_PATH": tmp_path / "pocketclaw.db",
        "POCKETCLAW_WORKSPACE": tmp_path / "groups",
    }
    values.update(extra)
    return Settings(_env_file=None, **values)


def _coordinator(tmp_path, worker: Any = None, **settings_kwargs: Any):
    settings = _settings(tmp_path, **settings_kwargs)
    db = Database(settings.database_path)
    db.initialize()
    local = RecordingChannel(ChannelType.LOCAL, max_length=100_000)
    telegram = RecordingChannel(ChannelType.TELEGRAM)
    worker = worker or FakeWorker()
    coordinator = Coordinator(
        settings=settings,
        db=db,
        workspace=GroupWorkspace(settings.workspace_root),
        worker=worker,
        local=local,
        telegram=telegram,
    )
    return coordinator, worker, db, local, telegram


def _msg(content: str, group_id: str = LOCAL, sender: str = "You") -> InboundMessage:
    return InboundMessage(
        id=f"{group_id}-{content}",
        group_id=group_id,
        sender=sender,
        content=content,
        timestamp=now_ms(),
        channel=ChannelType.TELEGRAM if group_id.startswith("tg:") else ChannelType.LOCAL,
    )


def _record(coordinator: Coordinator, event_type: type) -> list[Any]:
    seen: list[Any] = []
    coordinator.events.subscribe(event_type, seen.append)
    return seen


# ---------------------------------------------------------------------------
# Trigger and dispatch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_main_group_always_triggers(tmp_path):
    coordinator, worker, db, local, _ = _coordinator(tmp_path)

    await coordinator.enqueue(_msg("what's the weather"))

    assert len(worker.sent) == 1
    request = worker.sent[0]
    assert isinstance(request, InvokeRequest)
    assert request.group_id == LOCAL
    assert request.messages == [{"role": "user", "content": "what's the weather"}]
    assert request.credentials.api_key == "sk-test"
    assert request.provider == "anthropic"
    assert "You are Andy" in request.system_prompt
    assert coordinator.state is OrchestratorState.THINKING
    assert coordinator.processing is True
    assert local.typing == [(LOCAL, True)]
    assert db.get_recent_messages(LOCAL, 10)[0].is_trigger is True


@pytest.mark.asyncio
async def test_other_groups_need_the_trigger(tmp_path):
    coordinator, worker, db, _, _ = _coordinator(tmp_path)

    await coordinator.enqueue(_msg("just chatting", group_id="tg:1"))
    assert worker.sent == []
    stored = db.get_recent_messages("tg:1", 10)
    assert len(stored) == 1
    assert stored[0].is_trigger is False

    await coordinator.enqueue(_msg("@andy help me", group_id="tg:1"))
    assert len(worker.sent) == 1
    # the untriggered message is still part of the context window
    assert [m["content"] for m in worker.sent[0].messages] == ["just chatting", "@andy help me"]


@pytest.mark.asyncio
async def test_memory_file_is_appended_to_system_prompt(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)
    GroupWorkspace(tmp_path / "groups").write_memory(LOCAL, "User prefers metric units.")

    await coordinator.enqueue(_msg("hi"))

    prompt = worker.sent[0].system_prompt
    assert prompt.endswith("## Persistent Memory\n\nUser prefers metric units.")


def test_system_prompt_without_memory_has_no_memory_section():
    prompt = build_system_prompt("Andy", None)

    assert prompt.startswith("You are Andy")
    assert "create_task" in prompt
    assert "<internal>" in prompt
    assert "Persistent Memory" not in prompt


# ---------------------------------------------------------------------------
# Single flight and FIFO
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_single_flight_and_fifo_order(tmp_path):
    coordinator, worker, _, _, telegram = _coordinator(tmp_path)

    for chat in ("tg:1", "tg:2", "tg:3"):
        await coordinator.enqueue(_msg(f"@Andy from {chat}", group_id=chat))

    assert [e.group_id for e in worker.sent] == ["tg:1"]
    assert coordinator.pending == 2

    await coordinator.handle_worker_message(ResponseEvent(group_id="tg:1", text="one"))
    assert [e.group_id for e in worker.sent] == ["tg:1", "tg:2"]

    await coordinator.handle_worker_message(ErrorEvent(group_id="tg:2", error="boom"))
    assert [e.group_id for e in worker.sent] == ["tg:1", "tg:2", "tg:3"]

    await coordinator.handle_worker_message(ResponseEvent(group_id="tg:3", text="three"))
    assert coordinator.pending == 0
    assert coordinator.processing is False
    assert coordinator.state is OrchestratorState.IDLE
    assert telegram.sent == [("tg:1", "one"), ("tg:2", f"{ERROR_PREFIX}boom"), ("tg:3", "three")]


@pytest.mark.asyncio
async def test_never_more_than_one_invocation_outstanding(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)
    for i in range(5):
        await coordinator.enqueue(_msg(f"m{i}"))

    for done in range(5):
        assert len(worker.sent) == done + 1
        assert coordinator.processing is True
        await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text=f"r{done}"))

    assert len(worker.sent) == 5
    assert coordinator.processing is False
    assert coordinator.pending == 0


# ---------------------------------------------------------------------------
# Delivery and state transitions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_response_is_persisted_routed_and_returns_to_idle(tmp_path):
    coordinator, _, db, local, _ = _coordinator(tmp_path)
    states = _record(coordinator, StateChanged)
    stored = _record(coordinator, MessageStored)

    await coordinator.enqueue(_msg("hi"))
    await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text="hello!"))

    assert [s.state for s in states] == [
        OrchestratorState.THINKING,
        OrchestratorState.RESPONDING,
        OrchestratorState.IDLE,
    ]
    assert local.sent == [(LOCAL, "hello!")]
    assert local.typing == [(LOCAL, True), (LOCAL, False)]
    history = db.get_recent_messages(LOCAL, 10)
    assert [(m.content, m.is_from_me, m.sender) for m in history] == [
        ("hi", False, "You"),
        ("hello!", True, "Andy"),
    ]
    assert [e.message.content for e in stored] == ["hi", "hello!"]


@pytest.mark.asyncio
async def test_error_envelope_is_formatted_and_releases_slot(tmp_path):
    coordinator, _, db, local, _ = _coordinator(tmp_path)
    errors = _record(coordinator, ErrorRaised)

    await coordinator.enqueue(_msg("hi"))
    await coordinator.handle_worker_message(ErrorEvent(group_id=LOCAL, error="Anthropic API error 500: x"))

    assert local.sent == [(LOCAL, "⚠️ Error: Anthropic API error 500: x")]
    assert errors == [ErrorRaised(group_id=LOCAL, error="Anthropic API error 500: x")]
    assert coordinator.state is OrchestratorState.IDLE
    assert coordinator.processing is False
    assert db.get_recent_messages(LOCAL, 10)[-1].content.startswith(ERROR_PREFIX)


@pytest.mark.asyncio
async def test_delivery_failure_still_returns_to_idle(tmp_path):
    coordinator, _, _, local, _ = _coordinator(tmp_path)

    async def broken_send(group_id: str, text: str) -> None:
        raise RuntimeError("transport down")

    local.send = broken_send  # type: ignore[method-assign]

    await coordinator.enqueue(_msg("hi"))
    await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text="hello"))

    assert coordinator.state is OrchestratorState.IDLE
    assert coordinator.processing is False


@pytest.mark.asyncio
async def test_router_truncates_to_channel_limit(tmp_path):
    coordinator, _, _, _, telegram = _coordinator(tmp_path)

    await coordinator.enqueue(_msg("@Andy write a lot", group_id="tg:9"))
    await coordinator.handle_worker_message(ResponseEvent(group_id="tg:9", text="x" * 5000))

    assert len(telegram.sent[0][1]) == 4096


@pytest.mark.asyncio
async def test_observer_only_envelopes_do_not_change_state(tmp_path):
    coordinator, _, _, local, _ = _coordinator(tmp_path)
    tools = _record(coordinator, ToolActivity)
    logs = _record(coordinator, ThinkingLogged)
    usage = _record(coordinator, TokenUsageReported)
    await coordinator.enqueue(_msg("hi"))

    entry = ThinkingLogEntry(group_id=LOCAL, kind="info", timestamp=1, label="Starting")
    token_usage = TokenUsage(LOCAL, 1, 2, 0, 0, 200_000)
    await coordinator.handle_worker_message(ToolActivityEvent(group_id=LOCAL, tool="bash", status="running"))
    await coordinator.handle_worker_message(ThinkingLogEvent(entry=entry))
    await coordinator.handle_worker_message(TokenUsageEvent(usage=token_usage))
    await coordinator.handle_worker_message(TypingEvent(group_id=LOCAL))

    assert tools == [ToolActivity(group_id=LOCAL, tool="bash", status="running")]
    assert logs == [ThinkingLogged(entry=entry)]
    assert usage == [TokenUsageReported(usage=token_usage)]
    assert local.typing[-1] == (LOCAL, True)
    assert coordinator.state is OrchestratorState.THINKING
    assert coordinator.processing is True


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_coordinator(tmp_path):
    coordinator, _, _, local, _ = _coordinator(tmp_path)

    def explode(event: StateChanged) -> None:
        raise RuntimeError("observer bug")

    seen = _record(coordinator, StateChanged)
    coordinator.events.subscribe(StateChanged, explode)

    await coordinator.enqueue(_msg("hi"))
    await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text="ok"))

    assert local.sent == [(LOCAL, "ok")]
    assert seen[-1].state is OrchestratorState.IDLE


@pytest.mark.asyncio
async def test_task_created_is_persisted(tmp_path):
    coordinator, _, db, _, _ = _coordinator(tmp_path)
    task = Task(id="t1", group_id="tg:5", schedule="0 8 * * *", prompt="news", created_at=5)

    await coordinator.handle_worker_message(TaskCreatedEvent(task=task))

    assert db.get_task("t1") == task


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unconfigured_backend_drops_message_without_invoking(tmp_path):
    coordinator, worker, db, local, _ = _coordinator(tmp_path, api_key="")
    errors = _record(coordinator, ErrorRaised)

    await coordinator.enqueue(_msg("hello?"))

    assert worker.sent == []
    assert coordinator.pending == 0
    assert coordinator.processing is False
    assert coordinator.state is OrchestratorState.IDLE
    assert len(errors) == 1
    assert "API key not configured" in errors[0].error
    assert local.sent[0][1].startswith(ERROR_PREFIX)
    # the inbound message is kept; nothing is retried
    assert len(db.get_recent_messages(LOCAL, 10)) == 1


@pytest.mark.asyncio
async def test_openai_provider_is_configured_by_base_url(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path, api_key="")
    await coordinator.set_provider("openai")

    await coordinator.enqueue(_msg("hi"))

    assert worker.sent[0].provider == "openai"
    assert worker.sent[0].credentials.base_url == "http://localhost:11434/v1"


@pytest.mark.asyncio
async def test_stored_credentials_stay_with_their_provider(tmp_path):
    coordinator, _, _, _, _ = _coordinator(tmp_path)
    await coordinator.set_api_key("sk-ant-stored")
    await coordinator.set_provider("openai")
    await coordinator.set_base_url("http://third-party.example/v1")

    openai = coordinator.credentials()
    assert openai.base_url == "http://third-party.example/v1"
    assert openai.api_key == ""

    await coordinator.set_provider("anthropic")
    anthropic = coordinator.credentials()
    assert anthropic.base_url == "https://api.anthropic.com"
    assert anthropic.api_key == "sk-ant-stored"

    await coordinator.set_api_key("sk-router", provider="openai")
    assert coordinator.credentials("openai").api_key == "sk-router"
    assert coordinator.credentials().api_key == "sk-ant-stored"
    with pytest.raises(ValueError):
        await coordinator.set_api_key("x", provider="gemini")

    reloaded, _, _, _, _ = _coordinator(tmp_path, api_key="")
    await reloaded.start()
    try:
        assert reloaded.provider == "anthropic"
        assert reloaded.credentials().base_url == "https://api.anthropic.com"
        assert reloaded.credentials().api_key == "sk-ant-stored"
        assert reloaded.credentials("openai").base_url == "http://third-party.example/v1"
        assert reloaded.credentials("openai").api_key == "sk-router"
    finally:
        await reloaded.shutdown()


@pytest.mark.asyncio
async def test_dispatch_failure_releases_slot_and_continues(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)
    errors = _record(coordinator, ErrorRaised)
    worker.fail_next = True

    await coordinator.enqueue(_msg("first"))

    assert coordinator.processing is False
    assert coordinator.state is OrchestratorState.IDLE
    assert errors[0].error == "worker unavailable"

    await coordinator.enqueue(_msg("second"))
    assert len(worker.sent) == 1


# ---------------------------------------------------------------------------
# Compaction, sessions, cancellation, scheduling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_compaction_replaces_history_with_one_summary(tmp_path):
    coordinator, worker, db, _, _ = _coordinator(tmp_path)
    compacted = _record(coordinator, ContextCompacted)
    for i in range(4):
        await coordinator.enqueue(_msg(f"question {i}"))
        await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text=f"answer {i}"))
    assert len(db.get_recent_messages(LOCAL, 50)) == 8

    await coordinator.compact_context(LOCAL)

    request = worker.sent[-1]
    assert isinstance(request, CompactRequest)
    assert len(request.messages) == 8
    assert coordinator.state is OrchestratorState.THINKING

    await coordinator.handle_worker_message(CompactDoneEvent(group_id=LOCAL, summary="We talked about 4 things."))

    history = db.get_recent_messages(LOCAL, 50)
    assert len(history) == 1
    assert history[0].content == f"{COMPACTED_PREFIX}We talked about 4 things."
    assert history[0].is_from_me is True
    assert build_conversation_messages(db, LOCAL, 50) == [
        {"role": "assistant", "content": f"{COMPACTED_PREFIX}We talked about 4 things."}
    ]
    assert compacted == [ContextCompacted(group_id=LOCAL, summary="We talked about 4 things.")]
    assert coordinator.state is OrchestratorState.IDLE
    assert coordinator.processing is False


@pytest.mark.asyncio
async def test_compaction_rejected_when_busy_or_unconfigured(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)
    await coordinator.enqueue(_msg("hi"))

    with pytest.raises(ConfigurationError, match="Cannot compact while processing"):
        await coordinator.compact_context(LOCAL)
    assert not any(isinstance(e, CompactRequest) for e in worker.sent)

    unconfigured, other_worker, _, _, _ = _coordinator(tmp_path / "other", api_key="")
    with pytest.raises(ConfigurationError, match="not configured"):
        await unconfigured.compact_context(LOCAL)
    assert other_worker.sent == []


@pytest.mark.asyncio
async def test_messages_wait_behind_compaction(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)
    await coordinator.compact_context(LOCAL)

    await coordinator.enqueue(_msg("hi"))
    assert len(worker.sent) == 1
    assert coordinator.pending == 1

    await coordinator.handle_worker_message(CompactDoneEvent(group_id=LOCAL, summary="s"))
    assert isinstance(worker.sent[-1], InvokeRequest)


@pytest.mark.asyncio
async def test_new_session_clears_history_but_keeps_tasks(tmp_path):
    coordinator, _, db, _, _ = _coordinator(tmp_path)
    resets = _record(coordinator, SessionReset)
    db.save_task(Task(id="t1", group_id=LOCAL, schedule="* * * * *", prompt="p", created_at=1))
    await coordinator.enqueue(_msg("hi"))
    await coordinator.handle_worker_message(ResponseEvent(group_id=LOCAL, text="hey"))

    await coordinator.new_session(LOCAL)

    assert db.get_recent_messages(LOCAL, 10) == []
    assert db.get_task("t1") is not None
    assert resets == [SessionReset(group_id=LOCAL)]


@pytest.mark.asyncio
async def test_cancel_sends_cancel_envelope_for_active_group(tmp_path):
    coordinator, worker, _, _, _ = _coordinator(tmp_path)

    assert await coordinator.cancel() is False

    await coordinator.enqueue(_msg("long job"))
    assert await coordinator.cancel("tg:other") is False
    assert await coordinator.cancel(LOCAL) is True
    assert worker.sent[-1] == CancelRequest(group_id=LOCAL)

    await coordinator.handle_worker_message(ErrorEvent(group_id=LOCAL, error="Invocation cancelled."))
    assert coordinator.processing is False
    assert coordinator.state is OrchestratorState.IDLE


@pytest.mark.asyncio
async def test_scheduled_prompt_goes_through_queue(tmp_path):
    coordinator, worker, db, _, _ = _coordinator(tmp_path)
    await coordinator.enqueue(_msg("@Andy busy", group_id="tg:1"))

    await coordinator.enqueue_scheduled("tg:2", "[SCHEDULED TASK] water the plants")

    assert [e.group_id for e in worker.sent] == ["tg:1"]
    stored = db.get_recent_messages("tg:2", 10)
    assert stored[0].sender == "Scheduler"
    assert stored[0].is_trigger is True

    await coordinator.handle_worker_message(ResponseEvent(group_id="tg:1", text="done"))
    assert worker.sent[-1].group_id == "tg:2"
    assert worker.sent[-1].messages[-1]["content"] == "[SCHEDULED TASK] water the plants"


# ---------------------------------------------------------------------------
# Settings and lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_settings_changes_persist_and_reload(tmp_path):
    coordinator, _, db, _, _ = _coordinator(tmp_path)
    await coordinator.set_model("claude-other")
    await coordinator.set_max_tokens(2048)
    await coordinator.set_assistant_name("Bob")
    await coordinator.set_api_key("sk-stored")

    assert coordinator.is_triggered(_msg("hey @bob", group_id="tg:1"))
    assert not coordinator.is_triggered(_msg("hey @andy", group_id="tg:1"))
    with pytest.raises(ValueError):
        await coordinator.set_provider("gemini")
    with pytest.raises(ValueError):
        await coordinator.set_max_tokens(0)

    reloaded, worker, _, _, _ = _coordinator(tmp_path, api_key="")
    await reloaded.start()
    try:
        assert reloaded.model == "claude-other"
        assert reloaded.max_tokens == 2048
        assert reloaded.assistant_name == "Bob"
        assert reloaded.is_configured()
        assert worker.started is True
    finally:
        await reloaded.shutdown()
    assert worker.started is False


@pytest.mark.asyncio
async def test_start_configures_telegram_from_stored_values(tmp_path):
    coordinator, _, db, _, telegram = _coordinator(tmp_path)
    db.set_config("telegram_bot_token", "123:abc")
    db.set_config("telegram_chat_ids", '["42", "-100"]')

    await coordinator.start()
    try:
        assert telegram.configured_with == ("123:abc", ["42", "-100"])
        assert telegram.running is True
    finally:
        await coordinator.shutdown()


@pytest.mark.asyncio
async def test_slash_commands_bypass_the_queue(tmp_path):
    coordinator, worker, db, local, _ = _coordinator(tmp_path)

    await coordinator.handle_inbound(_msg("/help"))

    assert worker.sent == []
    assert db.get_recent_messages(LOCAL, 10) == []
    assert local.sent[0][1].startswith("Commands:")


class EchoToolProvider(LLMProvider):
    name = "fake"
    context_limit = 100

    def __init__(self) -> None:
        self.calls = 0

    def start_transcript(self, system_prompt, messages):  # noqa: ANN001, ANN201
        return Transcript(system=system_prompt, messages=list(messages))

    async def generate(self, transcript, tools, max_tokens):  # noqa: ANN001, ANN201
        self.calls += 1
        if self.calls == 1:
            return LLMResponse(content="", tool_calls=[LLMToolCall("calculate", {"expression": "6*7"}, "c1")])
        return LLMResponse(content="<internal>used calculator</internal>The answer is 42.")

    def append_tool_round(self, transcript, response, results):  # noqa: ANN001, ANN201
        transcript.messages.append({"role": "user", "content": results[0][1]})


@pytest.mark.asyncio
async def test_end_to_end_with_real_worker(tmp_path):
    provider = EchoToolProvider()
    worker = AgentWorker(
        workspace=GroupWorkspace(tmp_path / "groups"),
        provider_factory=lambda name, credentials, model: provider,
    )
    coordinator, _, db, local, _ = _coordinator(tmp_path, worker=worker)
    tools = _record(coordinator, ToolActivity)

    await coordinator.start()
    try:
        await coordinator.enqueue(_msg("what is 6*7?"))
        await asyncio.wait_for(local.delivered.wait(), timeout=5)
    finally:
        await coordinator.shutdown()

    assert local.sent == [(LOCAL, "The answer is 42.")]
    assert [(t.tool, t.status) for t in tools] == [("calculate", "running"), ("calculate", "done")]
    assert db.get_recent_messages(LOCAL, 10)[-1].content == "The answer is 42."
    assert coordinator.state is OrchestratorState.IDLE
