"""In-process chat channel used by the terminal UI."""

from __future__ import annotations

import logging
from typing import Callable

from pocketclaw.channels.base import Channel
from pocketclaw.config import DEFAULT_GROUP_ID, LOCAL_MAX_LENGTH
from pocketclaw.models import ChannelType, InboundMessage, new_id, now_ms

LOGGER = logging.getLogger(__name__)

DisplayCallback = Callable[[str, str], None]
TypingCallback = Callable[[str, bool], None]


class LocalChannel(Channel):
    """Messages typed locally; replies are handed to display callbacks."""

    type = ChannelType.LOCAL
    max_length = LOCAL_MAX_LENGTH

    def __init__(self, sender: str = "You") -> None:
        super().__init__()
        self._sender = sender
        self._display: list[DisplayCallback] = []
        self._typing: list[TypingCallback] = []

    def on_display(self, callback: DisplayCallback) -> None:
        self._display.append(callback)

    def on_typing(self, callback: TypingCallback) -> None:
        self._typing.append(callback)

    async def submit(self, text: str, group_id: str = DEFAULT_GROUP_ID) -> InboundMessage:
        """Turn locally entered text into an inbound message."""

        msg = InboundMessage(
            id=new_id(),
            group_id=group_id,
            sender=self._sender,
            content=text,
            timestamp=now_ms(),
            channel=ChannelType.LOCAL,
        )
        await self._deliver(msg)
        return msg

    def start(self) -> None:
        LOGGER.debug("Local channel ready")

    async def stop(self) -> None:
        LOGGER.debug("Local channel stopped")

    async def send(self, group_id: str, text: str) -> None:
        for callback in self._display:
            callback(group_id, text)

    async def set_typing(self, group_id: str, typing: bool) -> None:
        for callback in self._typing:
            callback(group_id, typing)
