"""Typed observer registry for coordinator events."""

from __future__ import annotations

import contextlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from pocketclaw.models import OrchestratorState, StoredMessage, ThinkingLogEntry, TokenUsage

LOGGER = logging.getLogger(__name__)

# --- Event types ---


@dataclass(frozen=True)
class StateChanged:
    state: OrchestratorState


@dataclass(frozen=True)
class MessageStored:
    """A message was appended to a group's log (inbound or outbound)."""

    message: StoredMessage


@dataclass(frozen=True)
class TypingChanged:
    group_id: str
    typing: bool


@dataclass(frozen=True)
class ToolActivity:
    group_id: str
    tool: str
    status: str


@dataclass(frozen=True)
class ThinkingLogged:
    entry: ThinkingLogEntry


@dataclass(frozen=True)
class ErrorRaised:
    group_id: str
    error: str


@dataclass(frozen=True)
class SessionReset:
    group_id: str


@dataclass(frozen=True)
class ContextCompacted:
    group_id: str
    summary: str


@dataclass(frozen=True)
class TokenUsageReported:
    usage: TokenUsage


E = TypeVar("E")
Listener = Callable[[Any], None]


class EventBus:
    """Synchronous dispatcher; each event type has its own independent listeners."""

    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type[E], listener: Callable[[E], None]) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(listener)

        return _unsubscribe

    def emit(self, event: object) -> None:
        """Call every listener of the event's type in subscription order."""
        for listener in list(self._listeners[type(event)]):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Event listener failed for %s", type(event).__name__)
