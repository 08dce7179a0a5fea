"""Anthropic Messages API implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from pocketclaw.config import ANTHROPIC_API_VERSION, ANTHROPIC_BASE_URL
from pocketclaw.llm.base import BackendError, LLMProvider, Transcript
from pocketclaw.models import ConversationMessage, LLMResponse, LLMToolCall, LLMUsage

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]
_CONTEXT_LIMIT = 200_000
# The Messages API wants the first turn to come from the user.
_LEADING_USER_TURN = "(Conversation resumed.)"


class AnthropicProvider(LLMProvider):
    """Message-style protocol: typed content blocks for tool use and results."""

    name = "anthropic"
    context_limit = _CONTEXT_LIMIT

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout_seconds: float = 120.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url or ANTHROPIC_BASE_URL
        self._timeout_seconds = timeout_seconds

    def start_transcript(self, system_prompt: str, messages: list[ConversationMessage]) -> Transcript:
        history = [{"role": m["role"], "content": m["content"]} for m in messages]
        if history and history[0]["role"] != "user":
            history.insert(0, {"role": "user", "content": _LEADING_USER_TURN})
        return Transcript(system=system_prompt, messages=history)

    async def generate(
        self,
        transcript: Transcript,
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "system": transcript.system,
            "messages": transcript.messages,
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self._timeout_seconds)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                response = await client.post(
                    "/v1/messages",
                    headers={
                        "x-api-key": self._api_key,
                        "anthropic-version": ANTHROPIC_API_VERSION,
                        "content-type": "application/json",
                    },
                    json=payload,
                )
                if response.status_code == 429 and attempt < _MAX_RETRIES:
                    wait = _RETRY_BACKOFF_SECONDS[attempt]
                    _LOGGER.warning(
                        "Anthropic rate limited (429), retrying in %ds (attempt %d/%d)",
                        wait,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    continue
                if response.status_code >= 400:
                    raise BackendError("Anthropic", response.status_code, response.text)
                break
            data = response.json()

        blocks: list[dict[str, Any]] = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        tool_calls = [
            LLMToolCall(
                name=b.get("name", ""),
                arguments=b.get("input") if isinstance(b.get("input"), dict) else {},
                call_id=b.get("id"),
            )
            for b in blocks
            if b.get("type") == "tool_use"
        ]
        _LOGGER.info(
            "LLM response: stop_reason=%r text=%r tool_calls=%r",
            data.get("stop_reason"),
            text[:200],
            [call.name for call in tool_calls],
        )

        usage = data.get("usage")
        return LLMResponse(
            content=text,
            tool_calls=tool_calls,
            usage=_parse_usage(usage) if isinstance(usage, dict) else None,
            raw=data,
        )

    def append_tool_round(
        self,
        transcript: Transcript,
        response: LLMResponse,
        results: list[tuple[LLMToolCall, str]],
    ) -> None:
        raw_blocks = (response.raw or {}).get("content") or []
        transcript.messages.append({"role": "assistant", "content": raw_blocks})
        transcript.messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": call.call_id, "content": output}
                    for call, output in results
                ],
            }
        )


def _parse_usage(usage: dict[str, Any]) -> LLMUsage:
    return LLMUsage(
        input_tokens=int(usage.get("input_tokens") or 0),
        output_tokens=int(usage.get("output_tokens") or 0),
        cache_read_tokens=int(usage.get("cache_read_input_tokens") or 0),
        cache_creation_tokens=int(usage.get("cache_creation_input_tokens") or 0),
    )
