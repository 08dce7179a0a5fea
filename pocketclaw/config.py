"""Application configuration."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_GROUP_ID = "local:main"
TELEGRAM_GROUP_PREFIX = "tg:"

ASSISTANT_NAME = "Andy"
DEFAULT_MODEL = "claude-sonnet-4-6"
DEFAULT_MAX_TOKENS = 8096
DEFAULT_PROVIDER = "anthropic"
PROVIDERS = ("anthropic", "openai")

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"
DEFAULT_OPENAI_BASE_URL = "http://localhost:11434/v1"
TELEGRAM_API_BASE = "https://api.telegram.org"

TELEGRAM_MAX_LENGTH = 4096
LOCAL_MAX_LENGTH = 100_000

MAX_ITERATIONS = 25
MAX_TOOL_RESULT_CHARS = 100_000
FETCH_MAX_RESPONSE = 20_000
COMPACT_MAX_TOKENS = 4096

SCHEDULED_TASK_MARKER = "[SCHEDULED TASK]"
MEMORY_FILE = "MEMORY.md"

# Keys in the persistent config store. Stored values win over env defaults.
# Credentials are kept per provider and never shared between them.
CONFIG_KEYS = {
    "provider": "provider",
    "anthropic_api_key": "anthropic_api_key",
    "anthropic_base_url": "anthropic_base_url",
    "openai_api_key": "openai_api_key",
    "openai_base_url": "openai_base_url",
    "model": "model",
    "max_tokens": "max_tokens",
    "assistant_name": "assistant_name",
    "telegram_bot_token": "telegram_bot_token",
    "telegram_chat_ids": "telegram_chat_ids",
}


class ConfigurationError(RuntimeError):
    """The backend is not configured, or the coordinator cannot take the request now."""


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    provider: str = Field(default=DEFAULT_PROVIDER, alias="POCKETCLAW_PROVIDER")
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(default=ANTHROPIC_BASE_URL, alias="ANTHROPIC_BASE_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default=DEFAULT_OPENAI_BASE_URL, alias="OPENAI_BASE_URL")
    model: str = Field(default=DEFAULT_MODEL, alias="POCKETCLAW_MODEL")
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, alias="POCKETCLAW_MAX_TOKENS")
    assistant_name: str = Field(default=ASSISTANT_NAME, alias="POCKETCLAW_ASSISTANT_NAME")
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    # Comma-separated chat ids allowed to talk to the bot (empty allows all).
    telegram_chat_ids: str = Field(default="", alias="TELEGRAM_CHAT_IDS")
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")
    database_path: Path = Field(default=Path("pocketclaw.db"), alias="DATABASE_PATH")
    workspace_root: Path = Field(
        default=Path.home() / ".pocketclaw" / "groups",
        alias="POCKETCLAW_WORKSPACE",
    )
    context_window_size: int = Field(default=50, alias="CONTEXT_WINDOW_SIZE")
    scheduler_interval_seconds: float = Field(default=60.0, alias="SCHEDULER_INTERVAL_SECONDS")
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")
    log_level: str = Field(default="INFO", alias="POCKETCLAW_LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def build_trigger_pattern(name: str) -> re.Pattern[str]:
    """Return the regex matching ``@<name>`` at a word boundary, case-insensitively."""

    return re.compile(rf"(^|\s)@{re.escape(name)}\b", re.IGNORECASE)


def parse_chat_ids(raw: str) -> list[str]:
    """Split a comma-separated chat id list, dropping blanks."""

    return [part.strip() for part in raw.split(",") if part.strip()]
