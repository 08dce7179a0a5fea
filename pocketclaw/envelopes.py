"""Messages exchanged between the coordinator and the agent worker.

These envelopes are the only thing that crosses the worker boundary. Inbound
envelopes are sent to the worker, outbound envelopes come back through its
outbox. Each variant has a ``kind`` tag.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from pocketclaw.models import ConversationMessage, Task, ThinkingLogEntry, TokenUsage


@dataclass(frozen=True, slots=True)
class BackendCredentials:
    """Secret and endpoint for the selected backend protocol."""

    api_key: str = ""
    base_url: str = ""


@dataclass(frozen=True, slots=True)
class InvokeRequest:
    kind: ClassVar[str] = "invoke"

    group_id: str
    messages: list[ConversationMessage]
    system_prompt: str
    provider: str
    credentials: BackendCredentials
    model: str
    max_tokens: int


@dataclass(frozen=True, slots=True)
class CompactRequest:
    kind: ClassVar[str] = "compact"

    group_id: str
    messages: list[ConversationMessage]
    system_prompt: str
    provider: str
    credentials: BackendCredentials
    model: str
    max_tokens: int


@dataclass(frozen=True, slots=True)
class CancelRequest:
    kind: ClassVar[str] = "cancel"

    group_id: str


@dataclass(frozen=True, slots=True)
class ResponseEvent:
    kind: ClassVar[str] = "response"

    group_id: str
    text: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"

    group_id: str
    error: str


@dataclass(frozen=True, slots=True)
class TypingEvent:
    kind: ClassVar[str] = "typing"

    group_id: str


@dataclass(frozen=True, slots=True)
class ToolActivityEvent:
    kind: ClassVar[str] = "tool-activity"

    group_id: str
    tool: str
    status: str


@dataclass(frozen=True, slots=True)
class ThinkingLogEvent:
    kind: ClassVar[str] = "thinking-log"

    entry: ThinkingLogEntry


@dataclass(frozen=True, slots=True)
class CompactDoneEvent:
    kind: ClassVar[str] = "compact-done"

    group_id: str
    summary: str


@dataclass(frozen=True, slots=True)
class TokenUsageEvent:
    kind: ClassVar[str] = "token-usage"

    usage: TokenUsage


@dataclass(frozen=True, slots=True)
class TaskCreatedEvent:
    kind: ClassVar[str] = "task-created"

    task: Task


WorkerInbound = Union[InvokeRequest, CompactRequest, CancelRequest]

WorkerOutbound = Union[
    ResponseEvent,
    ErrorEvent,
    TypingEvent,
    ToolActivityEvent,
    ThinkingLogEvent,
    CompactDoneEvent,
    TokenUsageEvent,
    TaskCreatedEvent,
]
