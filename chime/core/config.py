"""
Chime Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CHIME_*)
3. Project config (./chime.toml)
4. User config (~/.chime/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CHIME_LLM_BASE_URL        → llm.base_url
    CHIME_LLM_API_KEY         → llm.api_key
    CHIME_TELEGRAM_TOKEN      → telegram.token
    CHIME_STORAGE_DB_PATH     → storage.db_path
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from chime.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class LLMConfig(BaseModel):
    """
    OpenAI-compatible chat completion endpoint.

    Agents carry their own api_key and model; api_key here is only used
    by collaborators that are not bound to an agent (image generation).
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    default_model: str = "gpt-4o"
    timeout: float = 60.0


class EngagementConfig(BaseModel):
    """Engagement decision engine tuning."""

    history_window: int = 10    # messages loaded for analysis
    prompt_window: int = 8      # messages shown to the analysis prompt
    cache_key_window: int = 5   # messages hashed into the cache key
    cache_ttl: float = 30.0     # seconds
    model: str = "gpt-4o"
    temperature: float = 0.3
    max_tokens: int = 200
    cache_failures: bool = False


class ReplyConfig(BaseModel):
    """Tool-augmented reply loop configuration."""

    max_iterations: int = 5
    history_limit: int = 100
    temperature: float = 0.7
    timezone: str = "Europe/Zurich"
    error_text: str = "Sorry, I had trouble processing your message."
    empty_text: str = "Sorry, I could not generate a response."

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v


class SchedulerConfig(BaseModel):
    """Job scheduler configuration."""

    reconcile_interval: float = 30.0   # seconds
    startup_check_delay: float = 5.0   # seconds
    legacy_media_dir: str = "static/upload"


class TelegramConfig(BaseModel):
    """Telegram bot delivery configuration."""

    token: str = ""
    timeout: float = 10.0
    poll_timeout: int = 25

    @property
    def configured(self) -> bool:
        return bool(self.token)


class StorageConfig(BaseModel):
    """Persistence configuration."""

    db_path: str = "~/.chime/chime.db"


class ImageConfig(BaseModel):
    """Image generation configuration."""

    model: str = "dall-e-2"
    size: str = "512x512"
    caption_model: str = "gpt-4o"  # describes inbound photos


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ChimeConfig(BaseModel):
    """Root configuration for Chime."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    engagement: EngagementConfig = Field(default_factory=EngagementConfig)
    reply: ReplyConfig = Field(default_factory=ReplyConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> ChimeConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or get_chime_home() / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "chime.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return ChimeConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        """Resolved SQLite database path."""
        return Path(self.storage.db_path).expanduser()


def get_chime_home() -> Path:
    """Get the Chime home directory (~/.chime)."""
    return Path.home() / ".chime"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


_ENV_MAPPING: dict[str, tuple[str, str]] = {
    "CHIME_LLM_BASE_URL": ("llm", "base_url"),
    "CHIME_LLM_API_KEY": ("llm", "api_key"),
    "CHIME_LLM_DEFAULT_MODEL": ("llm", "default_model"),
    "CHIME_LLM_TIMEOUT": ("llm", "timeout"),
    "CHIME_ENGAGEMENT_MODEL": ("engagement", "model"),
    "CHIME_ENGAGEMENT_CACHE_TTL": ("engagement", "cache_ttl"),
    "CHIME_REPLY_MAX_ITERATIONS": ("reply", "max_iterations"),
    "CHIME_REPLY_TIMEZONE": ("reply", "timezone"),
    "CHIME_SCHEDULER_RECONCILE_INTERVAL": ("scheduler", "reconcile_interval"),
    "CHIME_TELEGRAM_TOKEN": ("telegram", "token"),
    "CHIME_STORAGE_DB_PATH": ("storage", "db_path"),
}

# Values that must stay strings even when they look numeric
_STRING_KEYS = {("llm", "api_key"), ("telegram", "token"), ("storage", "db_path")}


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CHIME_* environment variables."""
    result: dict[str, Any] = {}

    for env_var, (section, key) in _ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        section_data = result.setdefault(section, {})
        if (section, key) in _STRING_KEYS:
            section_data[key] = value
        else:
            section_data[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
