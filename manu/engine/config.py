"""Configuration loaded from defaults and environment variables.

All settings have sensible defaults. Override via MANU_* env vars,
a YAML file (see yaml_config.py), or CLI flags, in increasing
order of precedence.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, swallowing callback errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        # Never let a display failure break the loop
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


PROVIDER_NAMES = ("anthropic", "openai", "gemini")

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "gemini": "gemini-2.0-flash",
}

DEFAULT_API_KEY_ENVS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}

DEFAULT_MAX_TOKENS = 8192

DEFAULT_SAFE_COMMANDS: list[str] = [
    "ls", "cat", "head", "tail", "grep", "find", "pwd", "echo",
    "which", "whoami", "date",
    "git status", "git log", "git diff", "git branch",
]

DEFAULT_IGNORE_PATTERNS: list[str] = [
    "node_modules", ".git", "dist", "build", "__pycache__",
    "*.lock", "*.min.js",
]

DEFAULT_SYSTEM_PROMPT = (
    "You are manu, a coding assistant running in the user's terminal. "
    "You can read, search and edit files, run shell commands, inspect "
    "git state and fetch web pages through the tools provided. Prefer "
    "small, verifiable steps. Read a file before editing it. When a tool "
    "fails or is skipped, explain what happened and adapt."
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ProviderSettings:
    """Per-vendor generation settings."""
    model: str
    max_tokens: int = DEFAULT_MAX_TOKENS
    base_url: str | None = None
    api_key_env: str | None = None
    temperature: float | None = None


@dataclass
class PermissionSettings:
    """Global override and safe-command allowlist."""
    approve_everything: bool = False
    safe_commands: list[str] = field(
        default_factory=lambda: list(DEFAULT_SAFE_COMMANDS),
    )


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        name: ProviderSettings(
            model=DEFAULT_MODELS[name],
            api_key_env=DEFAULT_API_KEY_ENVS[name],
        )
        for name in PROVIDER_NAMES
    }


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class AppConfig:
    """Application configuration."""

    default_provider: str = "anthropic"
    providers: dict[str, ProviderSettings] = field(
        default_factory=_default_providers,
    )
    permissions: PermissionSettings = field(default_factory=PermissionSettings)

    # Fallback deadline for tools that declare none.
    # Set to 0 (or a negative value) to disable timeout.
    tool_timeout_seconds: float = 60.0
    # Max model requests per user message. 0 means unbounded.
    max_iterations: int = 0

    ignore_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS),
    )
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Logging
    log_level: str = "INFO"

    def provider_settings(self, name: str | None = None) -> ProviderSettings:
        """Settings for *name* (default provider when omitted)."""
        key = name or self.default_provider
        settings = self.providers.get(key)
        if settings is None:
            raise ConfigError(
                f"unknown provider '{key}' "
                f"(expected one of: {', '.join(PROVIDER_NAMES)})"
            )
        return settings

    def validate(self) -> None:
        if self.default_provider not in PROVIDER_NAMES:
            raise ConfigError(
                f"unknown provider '{self.default_provider}' "
                f"(expected one of: {', '.join(PROVIDER_NAMES)})"
            )
        for name, settings in self.providers.items():
            if settings.max_tokens <= 0:
                raise ConfigError(
                    f"max_tokens for '{name}' must be positive, "
                    f"got {settings.max_tokens}"
                )
        if self.max_iterations < 0:
            raise ConfigError(
                f"max_iterations must be >= 0, got {self.max_iterations}"
            )

    @classmethod
    def from_env(cls, base: AppConfig | None = None) -> AppConfig:
        """Apply MANU_* environment overrides on top of *base*."""
        config = base if base is not None else cls()
        manu_vars = {
            k: v for k, v in os.environ.items() if k.startswith("MANU_")
        }
        if manu_vars:
            logger.info(
                "AppConfig.from_env: MANU_* env overrides: %s",
                ", ".join(sorted(manu_vars)),
            )
        else:
            logger.debug("AppConfig.from_env: no MANU_* env vars set")

        provider = os.getenv("MANU_DEFAULT_PROVIDER")
        if provider:
            config.default_provider = provider.strip().lower()

        model = os.getenv("MANU_MODEL")
        max_tokens_raw = os.getenv("MANU_MAX_TOKENS")
        if model or max_tokens_raw:
            settings = config.provider_settings()
            if model:
                settings.model = model
            settings.max_tokens = _env_int("MANU_MAX_TOKENS", settings.max_tokens)

        yolo = os.getenv("MANU_YOLO")
        if yolo is not None and yolo != "":
            config.permissions.approve_everything = yolo.lower() in _TRUE_VALUES

        config.tool_timeout_seconds = _env_float(
            "MANU_TOOL_TIMEOUT", config.tool_timeout_seconds,
        )
        config.max_iterations = _env_int(
            "MANU_MAX_ITERATIONS", config.max_iterations,
        )
        config.log_level = os.getenv("MANU_LOG_LEVEL", config.log_level).upper()

        config.validate()
        logger.info(
            "AppConfig.from_env: provider=%s model=%s yolo=%s log_level=%s",
            config.default_provider,
            config.provider_settings().model,
            config.permissions.approve_everything,
            config.log_level,
        )
        return config
