"""Telegram Bot API channel (long polling)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from pocketclaw.channels.base import Channel
from pocketclaw.config import TELEGRAM_API_BASE, TELEGRAM_GROUP_PREFIX, TELEGRAM_MAX_LENGTH
from pocketclaw.models import ChannelType, InboundMessage, new_id

LOGGER = logging.getLogger(__name__)


class TelegramError(RuntimeError):
    """The Bot API answered ``ok: false`` or a non-200 status."""


class TelegramChannel(Channel):
    """Adapter around the Telegram Bot API ``getUpdates`` long poll."""

    type = ChannelType.TELEGRAM
    max_length = TELEGRAM_MAX_LENGTH

    def __init__(
        self,
        api_base: str = TELEGRAM_API_BASE,
        poll_timeout_seconds: int = 30,
        retry_delay_seconds: float = 5.0,
    ) -> None:
        super().__init__()
        self._api_base = api_base.rstrip("/")
        self._poll_timeout_seconds = poll_timeout_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._token = ""
        self._chat_ids: frozenset[str] = frozenset()
        self._offset = 0
        self._task: asyncio.Task[None] | None = None

    def configure(self, token: str, chat_ids: list[str]) -> None:
        """Set the bot token and the chats allowed to talk to it (empty allows all)."""

        self._token = token
        self._chat_ids = frozenset(str(c) for c in chat_ids)

    @property
    def configured(self) -> bool:
        return bool(self._token)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.configured:
            LOGGER.info("Telegram channel not configured; not polling")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_forever(), name="telegram-poll")
        LOGGER.info("Telegram polling started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        LOGGER.info("Telegram polling stopped")

    async def _poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except (httpx.HTTPError, TelegramError, ValueError) as exc:
                LOGGER.warning("Telegram poll failed, retrying in %ss: %s", self._retry_delay_seconds, exc)
                await asyncio.sleep(self._retry_delay_seconds)

    async def poll_once(self) -> int:
        """Fetch one batch of updates and deliver them in order. Returns the batch size."""

        data = await self._call(
            "getUpdates",
            {
                "offset": self._offset,
                "timeout": self._poll_timeout_seconds,
                "allowed_updates": ["message"],
            },
            timeout=self._poll_timeout_seconds + 10,
        )
        updates: list[dict[str, Any]] = data.get("result") or []
        for update in updates:
            self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
            try:
                await self._handle_update(update)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to handle Telegram update %s", update.get("update_id"))
        return len(updates)

    async def _handle_update(self, update: dict[str, Any]) -> None:
        message = update.get("message")
        if not isinstance(message, dict):
            return
        text = message.get("text")
        chat = message.get("chat") or {}
        if not isinstance(text, str) or "id" not in chat:
            return
        chat_id = str(chat["id"])

        if text.strip() == "/chatid":
            await self.send(f"{TELEGRAM_GROUP_PREFIX}{chat_id}", f"Chat ID: {chat_id}")
            return
        if self._chat_ids and chat_id not in self._chat_ids:
            LOGGER.warning("Dropping message from unauthorized chat %s", chat_id)
            return

        await self._deliver(_to_message(message, chat_id, text))

    async def send(self, group_id: str, text: str) -> None:
        await self._call("sendMessage", {"chat_id": _chat_id(group_id), "text": text})

    async def set_typing(self, group_id: str, typing: bool) -> None:
        # Telegram has no explicit "stop typing"; the indicator expires by itself.
        if not typing or not self.configured:
            return
        try:
            await self._call("sendChatAction", {"chat_id": _chat_id(group_id), "action": "typing"})
        except (httpx.HTTPError, TelegramError) as exc:
            LOGGER.debug("sendChatAction failed for %s: %s", group_id, exc)

    async def _call(self, method: str, payload: dict[str, Any], timeout: float = 15.0) -> dict[str, Any]:
        if not self._token:
            raise TelegramError("Telegram bot token not configured")
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{self._api_base}/bot{self._token}/{method}",
                json=payload,
                timeout=timeout,
            )
        data = resp.json()
        if resp.status_code != 200 or not data.get("ok"):
            raise TelegramError(
                f"Telegram {method} failed (HTTP {resp.status_code}): {data.get('description', '')}"
            )
        return data


def _chat_id(group_id: str) -> str:
    if not group_id.startswith(TELEGRAM_GROUP_PREFIX):
        raise ValueError(f"Not a Telegram group id: {group_id}")
    return group_id[len(TELEGRAM_GROUP_PREFIX):]


def _to_message(message: dict[str, Any], chat_id: str, text: str) -> InboundMessage:
    sender_info = message.get("from") or {}
    sender = str(
        sender_info.get("first_name")
        or sender_info.get("username")
        or sender_info.get("id")
        or "unknown"
    )
    return InboundMessage(
        id=new_id(),
        group_id=f"{TELEGRAM_GROUP_PREFIX}{chat_id}",
        sender=sender,
        content=text,
        timestamp=int(message.get("date") or 0) * 1000,
        channel=ChannelType.TELEGRAM,
    )
