"""Resolve a group id to the channel that owns it."""

from __future__ import annotations

import logging

from pocketclaw.channels.base import Channel
from pocketclaw.models import ChannelType, channel_for_group

LOGGER = logging.getLogger(__name__)


class Router:
    """Stateless fan-out from group ids to channel adapters."""

    def __init__(self, local: Channel, telegram: Channel) -> None:
        self._channels: dict[ChannelType, Channel] = {
            ChannelType.LOCAL: local,
            ChannelType.TELEGRAM: telegram,
        }

    def channel_for(self, group_id: str) -> Channel:
        return self._channels[channel_for_group(group_id)]

    async def send(self, group_id: str, text: str) -> None:
        """Send text to the owning channel, truncated to its payload limit."""

        channel = self.channel_for(group_id)
        if len(text) > channel.max_length:
            LOGGER.debug("Truncating %d chars to %d for %s", len(text), channel.max_length, group_id)
            text = text[: channel.max_length]
        await channel.send(group_id, text)

    async def set_typing(self, group_id: str, typing: bool) -> None:
        await self.channel_for(group_id).set_typing(group_id, typing)
