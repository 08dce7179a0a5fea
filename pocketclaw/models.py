"""Core domain models used across layers."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pocketclaw.config import TELEGRAM_GROUP_PREFIX

# Wire-format message exchanged with model backends:
# {"role": "user" | "assistant", "content": str | list[content block dict]}
ConversationMessage = dict[str, Any]

ThinkingKind = Literal["api-call", "tool-call", "tool-result", "text", "info"]

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


class ChannelType(str, Enum):
    """Transport a message arrived on."""

    LOCAL = "local"
    TELEGRAM = "telegram"


class OrchestratorState(str, Enum):
    """Coordinator-wide state; exactly one value holds at a time."""

    IDLE = "idle"
    THINKING = "thinking"
    RESPONDING = "responding"


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """Message normalized by channel adapters."""

    id: str
    group_id: str
    sender: str
    content: str
    timestamp: int
    channel: ChannelType


@dataclass(frozen=True, slots=True)
class StoredMessage:
    """Inbound message plus delivery flags, as kept in the message log."""

    id: str
    group_id: str
    sender: str
    content: str
    timestamp: int
    channel: ChannelType
    is_from_me: bool = False
    is_trigger: bool = False

    @classmethod
    def from_inbound(cls, msg: InboundMessage, is_trigger: bool) -> StoredMessage:
        return cls(
            id=msg.id,
            group_id=msg.group_id,
            sender=msg.sender,
            content=msg.content,
            timestamp=msg.timestamp,
            channel=msg.channel,
            is_from_me=False,
            is_trigger=is_trigger,
        )


@dataclass(slots=True)
class Task:
    """A recurring prompt evaluated against a cron schedule."""

    id: str
    group_id: str
    schedule: str
    prompt: str
    enabled: bool = True
    last_run: int | None = None
    created_at: int = field(default_factory=lambda: now_ms())


@dataclass(frozen=True, slots=True)
class ThinkingLogEntry:
    """Ephemeral observability record emitted while the agent works."""

    group_id: str
    kind: ThinkingKind
    timestamp: int
    label: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting for one backend round trip."""

    group_id: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    context_limit: int


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMUsage:
    """Raw token counts reported by a backend."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    usage: LLMUsage | None = None
    raw: dict[str, Any] | None = None


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def new_id() -> str:
    """Return a lexicographically sortable unique id (ULID layout)."""

    timestamp = now_ms()
    time_part = ""
    for _ in range(10):
        time_part = _CROCKFORD[timestamp % 32] + time_part
        timestamp //= 32
    randomness = int.from_bytes(os.urandom(10), "big")
    random_part = ""
    for _ in range(16):
        random_part = _CROCKFORD[randomness % 32] + random_part
        randomness //= 32
    return time_part + random_part


def channel_for_group(group_id: str) -> ChannelType:
    """Infer the originating channel from a namespaced group id."""

    if group_id.startswith(TELEGRAM_GROUP_PREFIX):
        return ChannelType.TELEGRAM
    return ChannelType.LOCAL
