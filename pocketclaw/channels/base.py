"""Channel adapter contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from pocketclaw.models import ChannelType, InboundMessage

MessageCallback = Callable[[InboundMessage], Awaitable[None]]


class Channel(ABC):
    """A transport that delivers inbound messages and accepts replies.

    Adapters deliver messages to the registered callback in the order the
    transport received them.
    """

    type: ChannelType
    max_length: int

    def __init__(self) -> None:
        self._callback: MessageCallback | None = None

    def on_message(self, callback: MessageCallback) -> None:
        self._callback = callback

    async def _deliver(self, msg: InboundMessage) -> None:
        if self._callback is not None:
            await self._callback(msg)

    @abstractmethod
    def start(self) -> None:
        """Begin receiving messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving messages."""

    @abstractmethod
    async def send(self, group_id: str, text: str) -> None:
        """Send text to a group."""

    @abstractmethod
    async def set_typing(self, group_id: str, typing: bool) -> None:
        """Show or clear the typing indicator for a group."""
