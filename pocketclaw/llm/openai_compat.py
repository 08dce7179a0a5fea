"""OpenAI-compatible chat completions implementation of LLMProvider.

Works against Ollama, OpenRouter and any other server exposing
``/chat/completions``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from pocketclaw.config import DEFAULT_OPENAI_BASE_URL
from pocketclaw.llm.base import BackendError, LLMProvider, Transcript
from pocketclaw.models import ConversationMessage, LLMResponse, LLMToolCall, LLMUsage

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]
_CONTEXT_LIMIT = 8192


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completion protocol: function tools, role=tool results."""

    name = "openai"
    context_limit = _CONTEXT_LIMIT

    def __init__(
        self,
        model: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        api_key: str = "",
        timeout_seconds: float = 120.0,
    ) -> None:
        self._model = model
        self._base_url = (base_url or DEFAULT_OPENAI_BASE_URL).rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    def start_transcript(self, system_prompt: str, messages: list[ConversationMessage]) -> Transcript:
        history: list[dict[str, Any]] = []
        for m in messages:
            content = m["content"]
            history.append(
                {
                    "role": m["role"],
                    "content": content if isinstance(content, str) else json.dumps(content),
                }
            )
        return Transcript(system=system_prompt, messages=history)

    async def generate(
        self,
        transcript: Transcript,
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
    ) -> LLMResponse:
        messages: list[dict[str, Any]] = []
        if transcript.system:
            messages.append({"role": "system", "content": transcript.system})
        messages.extend(transcript.messages)

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool["description"],
                        "parameters": tool["input_schema"],
                    },
                }
                for tool in tools
            ]

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        timeout = httpx.Timeout(self._timeout_seconds)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                response = await client.post("/chat/completions", headers=headers, json=payload)
                if response.status_code == 429 and attempt < _MAX_RETRIES:
                    wait = _RETRY_BACKOFF_SECONDS[attempt]
                    _LOGGER.warning(
                        "Chat completions rate limited (429), retrying in %ds (attempt %d/%d)",
                        wait,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    continue
                if response.status_code >= 400:
                    raise BackendError("Chat completions", response.status_code, response.text)
                break
            data = response.json()

        choice = data["choices"][0]["message"]
        finish_reason = data["choices"][0].get("finish_reason")
        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%r",
            finish_reason,
            content[:200],
            choice.get("tool_calls"),
        )

        parsed_tool_calls: list[LLMToolCall] = []
        for tool_call in choice.get("tool_calls") or []:
            function_data = tool_call.get("function", {})
            parsed_tool_calls.append(
                LLMToolCall(
                    name=function_data.get("name", ""),
                    arguments=_safe_json_loads(function_data.get("arguments") or "{}"),
                    call_id=tool_call.get("id"),
                )
            )

        usage = data.get("usage")
        return LLMResponse(
            content=content,
            tool_calls=parsed_tool_calls,
            usage=_parse_usage(usage) if isinstance(usage, dict) else None,
            raw=data,
        )

    def append_tool_round(
        self,
        transcript: Transcript,
        response: LLMResponse,
        results: list[tuple[LLMToolCall, str]],
    ) -> None:
        raw = response.raw or {}
        assistant_message = raw["choices"][0]["message"] if raw.get("choices") else {
            "role": "assistant",
            "content": response.content,
        }
        transcript.messages.append(assistant_message)
        for call, output in results:
            transcript.messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.call_id,
                    "name": call.name,
                    "content": output,
                }
            )


def _safe_json_loads(raw: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _parse_usage(usage: dict[str, Any]) -> LLMUsage:
    return LLMUsage(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
    )
