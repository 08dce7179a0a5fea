"""Provider selection by name."""

from __future__ import annotations

from pocketclaw.envelopes import BackendCredentials
from pocketclaw.llm.anthropic import AnthropicProvider
from pocketclaw.llm.base import LLMProvider
from pocketclaw.llm.openai_compat import OpenAICompatibleProvider


def build_provider(
    provider: str,
    credentials: BackendCredentials,
    model: str,
    timeout_seconds: float = 120.0,
) -> LLMProvider:
    if provider == "anthropic":
        return AnthropicProvider(
            api_key=credentials.api_key,
            model=model,
            base_url=credentials.base_url,
            timeout_seconds=timeout_seconds,
        )
    if provider == "openai":
        return OpenAICompatibleProvider(
            model=model,
            base_url=credentials.base_url,
            api_key=credentials.api_key,
            timeout_seconds=timeout_seconds,
        )
    raise ValueError(f"Unknown provider: {provider}")
