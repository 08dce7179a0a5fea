"""Coordinator: trigger check, single-flight queue and worker orchestration.

One instance is built at startup and handed to everything that needs it.
Inbound messages are persisted, checked for the trigger and queued; the head
of the queue is dispatched to the agent worker and the slot stays taken until
the worker reports completion through its outbox.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections import deque

from pocketclaw.channels.local import LocalChannel
from pocketclaw.channels.telegram import TelegramChannel
from pocketclaw.commands import CommandDispatcher
from pocketclaw.config import (
    CONFIG_KEYS,
    DEFAULT_GROUP_ID,
    ConfigurationError,
    PROVIDERS,
    Settings,
    build_trigger_pattern,
    parse_chat_ids,
)
from pocketclaw.db import Database, build_conversation_messages
from pocketclaw.envelopes import (
    BackendCredentials,
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
    WorkerOutbound,
)
from pocketclaw.events import (
    ContextCompacted,
    ErrorRaised,
    EventBus,
    MessageStored,
    SessionReset,
    StateChanged,
    ThinkingLogged,
    TokenUsageReported,
    ToolActivity,
    TypingChanged,
)
from pocketclaw.models import (
    InboundMessage,
    OrchestratorState,
    StoredMessage,
    channel_for_group,
    new_id,
    now_ms,
)
from pocketclaw.router import Router
from pocketclaw.scheduler import TaskScheduler
from pocketclaw.storage import GroupWorkspace
from pocketclaw.worker import AgentWorker

LOGGER = logging.getLogger(__name__)

ERROR_PREFIX = "⚠️ Error: "
COMPACTED_PREFIX = "📝 **Context Compacted**\n\n"
SCHEDULER_SENDER = "Scheduler"
CREDENTIAL_KEYS = ("anthropic_api_key", "anthropic_base_url", "openai_api_key", "openai_base_url")


def build_system_prompt(assistant_name: str, memory: str | None) -> str:
    """Assistant identity, tool catalogue and guidelines, plus the group's memory file."""

    parts = [
        f"You are {assistant_name}, a personal AI assistant.",
        "",
        "You have access to the following tools:",
        "- **bash**: Run shell commands inside the group workspace. Use for scripts and text processing.",
        "- **read_file** / **write_file** / **list_files**: Manage files in the group workspace.",
        "- **fetch_url**: Make HTTP requests. HTML pages are returned as plain text.",
        "- **update_memory**: Persist important context to MEMORY.md, loaded on every conversation.",
        "- **create_task**: Schedule recurring tasks with cron expressions.",
        "- **calculate**: Evaluate arithmetic expressions exactly.",
        "",
        "Guidelines:",
        "- Be concise and direct.",
        "- Use tools proactively when they help answer the question.",
        "- Update memory when you learn important preferences or context.",
        "- For scheduled tasks, confirm the schedule with the user.",
        "- Wrap private reasoning in <internal></internal> tags; it is removed before the reply is sent.",
    ]
    if memory:
        parts.extend(["", "## Persistent Memory", "", memory])
    return "\n".join(parts)


class Coordinator:
    """Owns the state machine, the message queue and the runtime backend config."""

    def __init__(
        self,
        settings: Settings,
        db: Database,
        workspace: GroupWorkspace,
        worker: AgentWorker,
        local: LocalChannel,
        telegram: TelegramChannel,
        events: EventBus | None = None,
    ) -> None:
        self._settings = settings
        self._db = db
        self._workspace = workspace
        self._worker = worker
        self._local = local
        self._telegram = telegram
        self.events = events or EventBus()
        self.router = Router(local, telegram)
        self.scheduler = TaskScheduler(
            db, self.enqueue_scheduled, poll_interval_seconds=settings.scheduler_interval_seconds
        )
        self._commands = CommandDispatcher(self, db)

        self._state = OrchestratorState.IDLE
        self._queue: deque[InboundMessage] = deque()
        self._processing = False
        self._active_group: str | None = None

        self._provider = settings.provider if settings.provider in PROVIDERS else PROVIDERS[0]
        # Stored credential overrides, keyed like "anthropic_api_key".
        self._credentials: dict[str, str] = {}
        self._model = settings.model
        self._max_tokens = settings.max_tokens
        self._assistant_name = settings.assistant_name
        self._trigger = build_trigger_pattern(self._assistant_name)

        self._pump_task: asyncio.Task[None] | None = None
        self._scheduler_task: asyncio.Task[None] | None = None

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Load stored config, wire channels and start the worker, pump and scheduler."""

        self._load_config()
        self._local.on_message(self.handle_inbound)
        self._telegram.on_message(self.handle_inbound)
        self._local.start()
        self._telegram.start()
        self._worker.start()
        self._pump_task = asyncio.create_task(self._pump_outbox(), name="coordinator-pump")
        self._scheduler_task = asyncio.create_task(self.scheduler.run_forever(), name="task-scheduler")
        LOGGER.info(
            "Coordinator started (provider=%s, model=%s, assistant=%s)",
            self._provider,
            self._model,
            self._assistant_name,
        )

    async def shutdown(self) -> None:
        self.scheduler.stop()
        tasks = [task for task in (self._scheduler_task, self._pump_task) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._telegram.stop()
        await self._local.stop()
        await self._worker.stop()
        self._pump_task = None
        self._scheduler_task = None
        LOGGER.info("Coordinator shutdown complete")

    async def _pump_outbox(self) -> None:
        while True:
            envelope = await self._worker.outbox.get()
            try:
                await self.handle_worker_message(envelope)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to handle worker %s envelope", envelope.kind)

    # -- read-only views ----------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def assistant_name(self) -> str:
        return self._assistant_name

    def is_triggered(self, msg: InboundMessage) -> bool:
        return msg.group_id == DEFAULT_GROUP_ID or bool(self._trigger.search(msg.content.strip()))

    def credentials(self, provider: str | None = None) -> BackendCredentials:
        """Credentials of one provider (the active one by default); stored values win over settings."""

        provider = provider or self._provider
        if provider == "anthropic":
            api_key, base_url = self._settings.anthropic_api_key, self._settings.anthropic_base_url
        else:
            api_key, base_url = self._settings.openai_api_key, self._settings.openai_base_url
        return BackendCredentials(
            api_key=self._credentials.get(f"{provider}_api_key", api_key),
            base_url=self._credentials.get(f"{provider}_base_url", base_url),
        )

    def is_configured(self) -> bool:
        creds = self.credentials()
        if self._provider == "anthropic":
            return bool(creds.api_key)
        return bool(creds.base_url.strip())

    def _unconfigured_error(self) -> str:
        if self._provider == "anthropic":
            return "API key not configured. Set ANTHROPIC_API_KEY or store a key in the config."
        return "Base URL not configured. Set OPENAI_BASE_URL to point at an OpenAI-compatible server."

    # -- inbound path -------------------------------------------------------

    async def handle_inbound(self, msg: InboundMessage) -> None:
        """Channel callback: chat commands are answered directly, everything else is enqueued."""

        reply = await self._commands.dispatch(msg)
        if reply is not None:
            await self.router.send(msg.group_id, reply)
            return
        await self.enqueue(msg)

    async def enqueue(self, msg: InboundMessage) -> None:
        """Persist a message and queue it when it triggers the assistant."""

        is_trigger = self.is_triggered(msg)
        stored = StoredMessage.from_inbound(msg, is_trigger)
        self._db.save_message(stored)
        self.events.emit(MessageStored(stored))
        LOGGER.info("Message %s from %s in %s (trigger=%s)", msg.id, msg.sender, msg.group_id, is_trigger)
        if is_trigger:
            self._queue.append(msg)
        await self.drain_queue()

    async def enqueue_scheduled(self, group_id: str, prompt: str) -> None:
        """Scheduler callback: store the prompt as a trigger message and queue it."""

        msg = InboundMessage(
            id=new_id(),
            group_id=group_id,
            sender=SCHEDULER_SENDER,
            content=prompt,
            timestamp=now_ms(),
            channel=channel_for_group(group_id),
        )
        stored = StoredMessage.from_inbound(msg, is_trigger=True)
        self._db.save_message(stored)
        self.events.emit(MessageStored(stored))
        self._queue.append(msg)
        LOGGER.info("Queued scheduled prompt for %s (%d pending)", group_id, len(self._queue))
        await self.drain_queue()

    async def drain_queue(self) -> None:
        """Dispatch the head of the queue unless an invocation already holds the slot."""

        while self._queue and not self._processing:
            if not self.is_configured():
                msg = self._queue.popleft()
                error = self._unconfigured_error()
                LOGGER.warning("Dropping message %s for %s: %s", msg.id, msg.group_id, error)
                self.events.emit(ErrorRaised(group_id=msg.group_id, error=error))
                try:
                    await self.router.send(msg.group_id, f"{ERROR_PREFIX}{error}")
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Failed to report configuration error to %s", msg.group_id)
                continue

            msg = self._queue.popleft()
            self._processing = True
            self._active_group = msg.group_id
            try:
                await self.invoke(msg.group_id, msg.content)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Failed to dispatch invocation for %s", msg.group_id)
                self.events.emit(ErrorRaised(group_id=msg.group_id, error=str(exc)))
                await self._release(msg.group_id)
            return

    async def invoke(self, group_id: str, text: str) -> None:
        """Build the context for a group and hand it to the worker. Does not wait for the reply."""

        self._set_state(OrchestratorState.THINKING)
        await self._set_typing(group_id, True)

        LOGGER.debug("Invoking agent for %s: %r", group_id, text[:80])
        request = InvokeRequest(
            group_id=group_id,
            messages=build_conversation_messages(self._db, group_id, self._settings.context_window_size),
            system_prompt=build_system_prompt(self._assistant_name, self._load_memory(group_id)),
            provider=self._provider,
            credentials=self.credentials(),
            model=self._model,
            max_tokens=self._max_tokens,
        )
        await self._worker.send(request)

    async def compact_context(self, group_id: str = DEFAULT_GROUP_ID) -> None:
        """Ask the worker to summarize a group's history; the summary replaces it on completion."""

        if not self.is_configured():
            raise ConfigurationError(f"{self._unconfigured_error()} Cannot compact context.")
        if self._processing or self._state is not OrchestratorState.IDLE:
            raise ConfigurationError("Cannot compact while processing. Wait for the current response to finish.")

        self._processing = True
        self._active_group = group_id
        try:
            self._set_state(OrchestratorState.THINKING)
            await self._set_typing(group_id, True)
            request = CompactRequest(
                group_id=group_id,
                messages=build_conversation_messages(self._db, group_id, self._settings.context_window_size),
                system_prompt=build_system_prompt(self._assistant_name, self._load_memory(group_id)),
                provider=self._provider,
                credentials=self.credentials(),
                model=self._model,
                max_tokens=self._max_tokens,
            )
            await self._worker.send(request)
        except Exception:
            self._processing = False
            self._active_group = None
            self._set_state(OrchestratorState.IDLE)
            raise
        LOGGER.info("Compaction requested for %s", group_id)

    async def new_session(self, group_id: str = DEFAULT_GROUP_ID) -> None:
        """Clear a group's stored history. Tasks are untouched."""

        self._db.clear_group_messages(group_id)
        LOGGER.info("New session for %s", group_id)
        self.events.emit(SessionReset(group_id=group_id))

    async def cancel(self, group_id: str | None = None) -> bool:
        """Abort the in-flight invocation. Returns False when there is nothing to cancel."""

        active = self._active_group
        if not self._processing or active is None or (group_id is not None and group_id != active):
            return False
        LOGGER.info("Requesting cancellation for %s", active)
        await self._worker.send(CancelRequest(group_id=active))
        return True

    # -- worker outbox ------------------------------------------------------

    async def handle_worker_message(self, envelope: WorkerOutbound) -> None:
        if isinstance(envelope, ResponseEvent):
            await self._deliver(envelope.group_id, envelope.text)
        elif isinstance(envelope, ErrorEvent):
            LOGGER.warning("Worker error for %s: %s", envelope.group_id, envelope.error)
            self.events.emit(ErrorRaised(group_id=envelope.group_id, error=envelope.error))
            await self._deliver(envelope.group_id, f"{ERROR_PREFIX}{envelope.error}")
        elif isinstance(envelope, TaskCreatedEvent):
            try:
                self._db.save_task(envelope.task)
            except sqlite3.Error:
                LOGGER.exception("Failed to save task %s", envelope.task.id)
            else:
                LOGGER.info("Saved task %s (%s) for %s", envelope.task.id, envelope.task.schedule, envelope.task.group_id)
        elif isinstance(envelope, TypingEvent):
            await self._set_typing(envelope.group_id, True)
        elif isinstance(envelope, ToolActivityEvent):
            self.events.emit(ToolActivity(group_id=envelope.group_id, tool=envelope.tool, status=envelope.status))
        elif isinstance(envelope, ThinkingLogEvent):
            self.events.emit(ThinkingLogged(entry=envelope.entry))
        elif isinstance(envelope, TokenUsageEvent):
            self.events.emit(TokenUsageReported(usage=envelope.usage))
        elif isinstance(envelope, CompactDoneEvent):
            await self._compact_done(envelope.group_id, envelope.summary)
        else:
            LOGGER.warning("Ignoring unknown worker envelope: %r", envelope)

    async def _deliver(self, group_id: str, text: str) -> None:
        self._set_state(OrchestratorState.RESPONDING)
        stored = StoredMessage(
            id=new_id(),
            group_id=group_id,
            sender=self._assistant_name,
            content=text,
            timestamp=now_ms(),
            channel=channel_for_group(group_id),
            is_from_me=True,
        )
        try:
            self._db.save_message(stored)
            self.events.emit(MessageStored(stored))
            await self.router.send(group_id, text)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to deliver reply to %s", group_id)
        finally:
            await self._release(group_id)

    async def _compact_done(self, group_id: str, summary: str) -> None:
        stored = StoredMessage(
            id=new_id(),
            group_id=group_id,
            sender=self._assistant_name,
            content=f"{COMPACTED_PREFIX}{summary}",
            timestamp=now_ms(),
            channel=channel_for_group(group_id),
            is_from_me=True,
        )
        try:
            self._db.replace_group_messages(group_id, stored)
        except sqlite3.Error:
            LOGGER.exception("Failed to store compacted context for %s", group_id)
            self.events.emit(ErrorRaised(group_id=group_id, error="Failed to store compacted context."))
        else:
            LOGGER.info("Compacted context for %s (%d chars)", group_id, len(summary))
            self.events.emit(ContextCompacted(group_id=group_id, summary=summary))
        finally:
            await self._release(group_id)

    async def _release(self, group_id: str) -> None:
        """Clear typing, free the slot, return to idle and dispatch the next message."""

        await self._set_typing(group_id, False)
        self._processing = False
        self._active_group = None
        self._set_state(OrchestratorState.IDLE)
        await self.drain_queue()

    # -- helpers ------------------------------------------------------------

    def _set_state(self, state: OrchestratorState) -> None:
        if state is self._state:
            return
        LOGGER.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        self.events.emit(StateChanged(state=state))

    async def _set_typing(self, group_id: str, typing: bool) -> None:
        self.events.emit(TypingChanged(group_id=group_id, typing=typing))
        try:
            await self.router.set_typing(group_id, typing)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Typing indicator failed for %s", group_id, exc_info=True)

    def _load_memory(self, group_id: str) -> str | None:
        try:
            return self._workspace.load_memory(group_id)
        except OSError as exc:
            LOGGER.warning("Could not read memory for %s: %s", group_id, exc)
            return None

    # -- runtime settings ---------------------------------------------------

    def _load_config(self) -> None:
        stored = {name: self._db.get_config(key) for name, key in CONFIG_KEYS.items()}

        if stored["provider"] in PROVIDERS:
            self._provider = stored["provider"]
        for name in CREDENTIAL_KEYS:
            if stored[name] is not None:
                self._credentials[name] = stored[name]
        if stored["model"]:
            self._model = stored["model"]
        if stored["max_tokens"]:
            try:
                self._max_tokens = int(stored["max_tokens"])
            except ValueError:
                LOGGER.warning("Ignoring invalid stored max_tokens %r", stored["max_tokens"])
        if stored["assistant_name"]:
            self._assistant_name = stored["assistant_name"]
            self._trigger = build_trigger_pattern(self._assistant_name)

        token = stored["telegram_bot_token"] or self._settings.telegram_bot_token
        if stored["telegram_chat_ids"]:
            chat_ids = [str(c) for c in json.loads(stored["telegram_chat_ids"])]
        else:
            chat_ids = parse_chat_ids(self._settings.telegram_chat_ids)
        if token:
            self._telegram.configure(token, chat_ids)

    async def set_provider(self, provider: str) -> None:
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider {provider!r}; expected one of {', '.join(PROVIDERS)}")
        self._provider = provider
        self._db.set_config(CONFIG_KEYS["provider"], provider)

    async def set_api_key(self, api_key: str, provider: str | None = None) -> None:
        """Store the API key of one provider (the active one by default)."""

        self._store_credential(f"{self._credential_owner(provider)}_api_key", api_key)

    async def set_base_url(self, base_url: str, provider: str | None = None) -> None:
        """Store the base URL of one provider (the active one by default)."""

        self._store_credential(f"{self._credential_owner(provider)}_base_url", base_url)

    def _credential_owner(self, provider: str | None) -> str:
        provider = provider or self._provider
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider {provider!r}; expected one of {', '.join(PROVIDERS)}")
        return provider

    def _store_credential(self, name: str, value: str) -> None:
        self._credentials[name] = value
        self._db.set_config(CONFIG_KEYS[name], value)

    async def set_model(self, model: str) -> None:
        if not model.strip():
            raise ValueError("Model name must not be empty")
        self._model = model.strip()
        self._db.set_config(CONFIG_KEYS["model"], self._model)

    async def set_max_tokens(self, max_tokens: int) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self._max_tokens = max_tokens
        self._db.set_config(CONFIG_KEYS["max_tokens"], str(max_tokens))

    async def set_assistant_name(self, name: str) -> None:
        if not name.strip():
            raise ValueError("Assistant name must not be empty")
        self._assistant_name = name.strip()
        self._trigger = build_trigger_pattern(self._assistant_name)
        self._db.set_config(CONFIG_KEYS["assistant_name"], self._assistant_name)

    async def configure_telegram(self, token: str, chat_ids: list[str]) -> None:
        """Store Telegram credentials and restart polling with them."""

        self._db.set_config(CONFIG_KEYS["telegram_bot_token"], token)
        self._db.set_config(CONFIG_KEYS["telegram_chat_ids"], json.dumps(chat_ids))
        await self._telegram.stop()
        self._telegram.configure(token, chat_ids)
        self._telegram.on_message(self.handle_inbound)
        self._telegram.start()

    def status_lines(self) -> list[str]:
        return [
            f"State: {self._state.value}",
            f"Provider: {self._provider} ({'configured' if self.is_configured() else 'not configured'})",
            f"Model: {self._model}",
            f"Max tokens: {self._max_tokens}",
            f"Assistant: {self._assistant_name}",
            f"Queued messages: {len(self._queue)}",
            f"Telegram: {'polling' if self._telegram.running else 'off'}",
        ]

