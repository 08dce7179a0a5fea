"""Agent worker: runs the tool-use loop behind a message-passing boundary.

The coordinator never touches worker state. It sends inbound envelopes with
``send`` and reads outbound envelopes, in order, from ``outbox``. Every
invoke/compact runs as its own task so a ``cancel`` can interrupt the
in-flight backend call or tool.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from functools import partial
from typing import Awaitable, Callable

from pocketclaw.config import COMPACT_MAX_TOKENS, MAX_ITERATIONS, MAX_TOOL_RESULT_CHARS
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
    WorkerInbound,
    WorkerOutbound,
)
from pocketclaw.llm.base import LLMProvider
from pocketclaw.llm.providers import build_provider
from pocketclaw.models import LLMResponse, LLMToolCall, Task, ThinkingKind, ThinkingLogEntry, TokenUsage, now_ms
from pocketclaw.storage import GroupWorkspace
from pocketclaw.tools.registry import ToolExecutor, build_tool_executor

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[str, BackendCredentials, str], LLMProvider]

MAX_ITERATIONS_REPLY = (
    f"⚠️ Reached maximum tool-use iterations ({MAX_ITERATIONS}). "
    "Stopping to avoid excessive API usage."
)
NO_RESPONSE = "(no response)"
CANCELLED_ERROR = "Invocation cancelled."

COMPACT_SYSTEM_SECTION = "\n".join(
    [
        "",
        "## COMPACTION TASK",
        "",
        "The conversation context is getting large. Produce a concise summary of the conversation so far.",
        "Include key facts, decisions, user preferences, and any important context.",
        "The summary will replace the full conversation history to stay within token limits.",
    ]
)
COMPACT_INSTRUCTION = (
    "Please provide a concise summary of our entire conversation so far. Include all key "
    "facts, decisions, code discussed, and important context. This summary will replace "
    "the full history."
)

_INTERNAL_BLOCK = re.compile(r"<internal>.*?</internal>", re.DOTALL)


def strip_internal(text: str) -> str:
    """Remove ``<internal>...</internal>`` reasoning blocks."""

    return _INTERNAL_BLOCK.sub("", text).strip()


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


class AgentWorker:
    """Isolated execution unit for agent invocations."""

    def __init__(
        self,
        workspace: GroupWorkspace | None = None,
        tools: ToolExecutor | None = None,
        provider_factory: ProviderFactory | None = None,
        request_timeout_seconds: float = 120.0,
        queue_size: int = 256,
    ) -> None:
        if tools is None:
            if workspace is None:
                raise ValueError("AgentWorker needs a workspace or a tool executor")
            tools = build_tool_executor(workspace, self._emit_task_created)
        self._tools = tools
        self._provider_factory = provider_factory or partial(
            build_provider, timeout_seconds=request_timeout_seconds
        )
        self._inbox: asyncio.Queue[WorkerInbound] = asyncio.Queue(maxsize=queue_size)
        self.outbox: asyncio.Queue[WorkerOutbound] = asyncio.Queue(maxsize=queue_size)
        self._active: dict[str, asyncio.Task[None]] = {}
        self._runner: asyncio.Task[None] | None = None
        self._posts: set[asyncio.Task[None]] = set()

    # -- boundary -----------------------------------------------------------

    async def send(self, envelope: WorkerInbound) -> None:
        """Deliver an inbound envelope to the worker."""

        await self._inbox.put(envelope)

    def start(self) -> None:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run(), name="agent-worker")

    async def stop(self) -> None:
        """Cancel in-flight invocations and end the actor loop."""

        pending = [task for task in self._active.values() if not task.done()]
        if self._runner is not None:
            pending.append(self._runner)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._runner = None
        for post in list(self._posts):
            post.cancel()

    async def run(self) -> None:
        """Actor loop: read envelopes and dispatch them."""

        while True:
            envelope = await self._inbox.get()
            if isinstance(envelope, CancelRequest):
                self._cancel(envelope.group_id)
            elif isinstance(envelope, InvokeRequest):
                self._spawn(envelope.group_id, partial(self._invoke, envelope), error_prefix="")
            elif isinstance(envelope, CompactRequest):
                self._spawn(envelope.group_id, partial(self._compact, envelope), error_prefix="Compaction failed: ")
            else:
                LOGGER.warning("Ignoring unknown worker envelope: %r", envelope)

    @property
    def busy_groups(self) -> list[str]:
        return [group_id for group_id, task in self._active.items() if not task.done()]

    # -- internals ----------------------------------------------------------

    def _spawn(self, group_id: str, job: Callable[[], Awaitable[None]], error_prefix: str) -> None:
        existing = self._active.get(group_id)
        if existing is not None and not existing.done():
            LOGGER.warning("Group %s already has an invocation in flight", group_id)
        task = asyncio.create_task(self._guard(group_id, job, error_prefix), name=f"agent-{group_id}")
        task.add_done_callback(partial(self._on_done, group_id))
        self._active[group_id] = task

    def _cancel(self, group_id: str) -> None:
        task = self._active.get(group_id)
        if task is None or task.done():
            LOGGER.info("Cancel for %s ignored: nothing in flight", group_id)
            return
        LOGGER.info("Cancelling invocation for %s", group_id)
        task.cancel()

    async def _guard(self, group_id: str, job: Callable[[], Awaitable[None]], error_prefix: str) -> None:
        try:
            await job()
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Agent invocation failed for %s", group_id)
            await self._post(ErrorEvent(group_id=group_id, error=f"{error_prefix}{exc}"))

    def _on_done(self, group_id: str, task: asyncio.Task[None]) -> None:
        if self._active.get(group_id) is task:
            del self._active[group_id]
        # A cancelled task may never have started, so the completion signal
        # is sent from here rather than from inside the task.
        if task.cancelled():
            try:
                self.outbox.put_nowait(ErrorEvent(group_id=group_id, error=CANCELLED_ERROR))
            except asyncio.QueueFull:
                LOGGER.warning("Worker outbox full; queueing cancellation notice for %s", group_id)
                post = asyncio.get_running_loop().create_task(
                    self.outbox.put(ErrorEvent(group_id=group_id, error=CANCELLED_ERROR))
                )
                self._posts.add(post)
                post.add_done_callback(self._posts.discard)

    async def _invoke(self, request: InvokeRequest) -> None:
        group_id = request.group_id
        await self._post(TypingEvent(group_id=group_id))
        await self._log(
            group_id,
            "info",
            "Starting",
            f"Provider: {request.provider} · Model: {request.model} · Max tokens: {request.max_tokens}",
        )

        provider = self._provider_factory(request.provider, request.credentials, request.model)
        transcript = provider.start_transcript(request.system_prompt, request.messages)
        tools = self._tools.definitions()

        for iteration in range(1, MAX_ITERATIONS + 1):
            await self._log(
                group_id,
                "api-call",
                f"API call #{iteration}",
                f"{len(transcript.messages)} messages in context",
            )
            response = await provider.generate(transcript, tools, request.max_tokens)
            await self._report_usage(group_id, provider, response)
            if response.content:
                await self._log(group_id, "text", "Response text", _preview(response.content, 200))

            if not response.tool_calls:
                text = strip_internal(response.content)
                await self._post(ResponseEvent(group_id=group_id, text=text or NO_RESPONSE))
                return

            results: list[tuple[LLMToolCall, str]] = []
            for call in response.tool_calls:
                results.append((call, await self._run_tool(group_id, call)))
            provider.append_tool_round(transcript, response, results)
            await self._post(TypingEvent(group_id=group_id))

        LOGGER.warning("Invocation for %s hit the %d iteration limit", group_id, MAX_ITERATIONS)
        await self._post(ResponseEvent(group_id=group_id, text=MAX_ITERATIONS_REPLY))

    async def _run_tool(self, group_id: str, call: LLMToolCall) -> str:
        await self._log(group_id, "tool-call", f"Tool: {call.name}", _preview(json.dumps(call.arguments), 300))
        await self._post(ToolActivityEvent(group_id=group_id, tool=call.name, status="running"))

        output = await self._tools.execute(call.name, call.arguments, group_id)
        output = output[:MAX_TOOL_RESULT_CHARS]

        await self._log(group_id, "tool-result", f"Result: {call.name}", _preview(output, 500))
        await self._post(ToolActivityEvent(group_id=group_id, tool=call.name, status="done"))
        return output

    async def _compact(self, request: CompactRequest) -> None:
        group_id = request.group_id
        await self._post(TypingEvent(group_id=group_id))
        await self._log(group_id, "info", "Compacting context", f"Summarizing {len(request.messages)} messages")

        provider = self._provider_factory(request.provider, request.credentials, request.model)
        transcript = provider.start_transcript(
            request.system_prompt + "\n" + COMPACT_SYSTEM_SECTION,
            [*request.messages, {"role": "user", "content": COMPACT_INSTRUCTION}],
        )
        response = await provider.generate(transcript, None, min(request.max_tokens, COMPACT_MAX_TOKENS))
        await self._report_usage(group_id, provider, response)

        summary = response.content.strip()
        if not summary:
            raise RuntimeError("backend returned an empty summary")
        await self._log(group_id, "info", "Compaction complete", f"Summary: {len(summary)} chars")
        await self._post(CompactDoneEvent(group_id=group_id, summary=summary))

    async def _report_usage(self, group_id: str, provider: LLMProvider, response: LLMResponse) -> None:
        if response.usage is None:
            return
        await self._post(
            TokenUsageEvent(
                usage=TokenUsage(
                    group_id=group_id,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    cache_read_tokens=response.usage.cache_read_tokens,
                    cache_creation_tokens=response.usage.cache_creation_tokens,
                    context_limit=provider.context_limit,
                )
            )
        )

    async def _emit_task_created(self, task: Task) -> None:
        await self._post(TaskCreatedEvent(task=task))

    async def _log(self, group_id: str, kind: ThinkingKind, label: str, detail: str | None = None) -> None:
        entry = ThinkingLogEntry(group_id=group_id, kind=kind, timestamp=now_ms(), label=label, detail=detail)
        await self._post(ThinkingLogEvent(entry=entry))

    async def _post(self, envelope: WorkerOutbound) -> None:
        await self.outbox.put(envelope)
