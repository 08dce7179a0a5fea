"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pocketclaw.models import ConversationMessage, LLMResponse, LLMToolCall


class BackendError(RuntimeError):
    """A model backend answered with a non-success status."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(f"{provider} API error {status_code}: {body[:500]}")
        self.status_code = status_code
        self.body = body


@dataclass(slots=True)
class Transcript:
    """Mutable conversation state for one agent run, in the provider's wire format."""

    system: str
    messages: list[dict[str, Any]] = field(default_factory=list)


class LLMProvider(ABC):
    """Abstract model backend used by the agent worker.

    Providers translate between the neutral tool catalogue / response types
    and their own protocol; the tool-use loop itself is protocol agnostic.
    """

    name: str
    context_limit: int

    @abstractmethod
    def start_transcript(self, system_prompt: str, messages: list[ConversationMessage]) -> Transcript:
        """Seed a transcript from the conversation window."""

    @abstractmethod
    async def generate(
        self,
        transcript: Transcript,
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
    ) -> LLMResponse:
        """Run one backend round trip."""

    @abstractmethod
    def append_tool_round(
        self,
        transcript: Transcript,
        response: LLMResponse,
        results: list[tuple[LLMToolCall, str]],
    ) -> None:
        """Append the model's tool request and our tool outputs to the transcript."""
