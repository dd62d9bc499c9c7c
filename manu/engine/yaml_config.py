"""YAML configuration loader.

Loads a single YAML file on top of the built-in defaults. Every
section is optional; absent keys keep their defaults.

Example YAML:
    provider:
      default: anthropic
      anthropic:
        model: claude-sonnet-4-20250514
        max_tokens: 8192
      openai:
        model: gpt-4o
        base_url: https://api.openai.com/v1
      gemini:
        model: gemini-2.0-flash
        api_key_env: GEMINI_API_KEY

    permissions:
      yolo_mode: false
      safe_commands: [ls, cat, "git status"]

    tools:
      timeout_seconds: 60

    context:
      ignore_patterns: [node_modules, .git, dist]

    agent:
      max_iterations: 25
      system_prompt: |
        ...
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .config import PROVIDER_NAMES, AppConfig, ProviderSettings
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = (".manu.yaml", "manu.yaml")


def _global_config_path() -> Path:
    """Return the per-user config path (~/.config/manu/config.yaml)."""
    return Path.home() / ".config" / "manu" / "config.yaml"


def find_config_file(cwd: str | Path | None = None) -> Path | None:
    """Locate the first config file, project directory before user home."""
    base = Path(cwd) if cwd is not None else Path.cwd()
    candidates = [base / name for name in CONFIG_FILENAMES]
    candidates.append(_global_config_path())
    for candidate in candidates:
        if candidate.is_file():
            logger.debug("find_config_file: using %s", candidate)
            return candidate
    logger.debug("find_config_file: no config file found")
    return None


def _section(raw: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping", source)
    return value


def _as_int(value: Any, key: str, source: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}", source)
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}", source) from exc


def _as_float(value: Any, key: str, source: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}", source)
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"'{key}' must be a number, got {value!r}", source) from exc


def _as_str_list(value: Any, key: str, source: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", source)
    return list(value)


def _apply_provider_section(
    config: AppConfig, section: dict[str, Any], source: str,
) -> None:
    default = section.get("default")
    if default is not None:
        if default not in PROVIDER_NAMES:
            raise ConfigError(
                f"unknown provider '{default}' "
                f"(expected one of: {', '.join(PROVIDER_NAMES)})",
                source,
            )
        config.default_provider = default

    for name, value in section.items():
        if name == "default":
            continue
        if name not in PROVIDER_NAMES:
            raise ConfigError(f"unknown provider section '{name}'", source)
        if not isinstance(value, dict):
            raise ConfigError(f"'provider.{name}' must be a mapping", source)
        settings: ProviderSettings = config.providers[name]
        if "model" in value:
            settings.model = str(value["model"])
        if "max_tokens" in value:
            settings.max_tokens = _as_int(
                value["max_tokens"], f"provider.{name}.max_tokens", source,
            )
        if "base_url" in value:
            settings.base_url = value["base_url"] or None
        if "api_key_env" in value:
            settings.api_key_env = value["api_key_env"] or None
        if "temperature" in value and value["temperature"] is not None:
            settings.temperature = _as_float(
                value["temperature"], f"provider.{name}.temperature", source,
            )


def load_yaml_config(
    path: str | Path, base: AppConfig | None = None,
) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML config file.
        base: Config to update in place. Defaults to a fresh AppConfig.

    Returns:
        The updated AppConfig.

    Raises:
        ConfigError: if the file cannot be read, is not valid YAML,
            or holds malformed values.
    """
    path = Path(path)
    source = str(path)
    logger.info("load_yaml_config: loading %s", path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read file: {exc}", source) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML: {exc}", source) from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("top level must be a mapping", source)

    config = base if base is not None else AppConfig()

    _apply_provider_section(config, _section(raw, "provider", source), source)

    permissions = _section(raw, "permissions", source)
    if "yolo_mode" in permissions:
        config.permissions.approve_everything = bool(permissions["yolo_mode"])
    if "safe_commands" in permissions:
        config.permissions.safe_commands = _as_str_list(
            permissions["safe_commands"], "permissions.safe_commands", source,
        )

    tools = _section(raw, "tools", source)
    if "timeout_seconds" in tools:
        config.tool_timeout_seconds = _as_float(
            tools["timeout_seconds"], "tools.timeout_seconds", source,
        )

    context = _section(raw, "context", source)
    if "ignore_patterns" in context:
        config.ignore_patterns = _as_str_list(
            context["ignore_patterns"], "context.ignore_patterns", source,
        )

    agent = _section(raw, "agent", source)
    if "max_iterations" in agent:
        config.max_iterations = _as_int(
            agent["max_iterations"], "agent.max_iterations", source,
        )
    if agent.get("system_prompt"):
        config.system_prompt = str(agent["system_prompt"])
    if agent.get("log_level"):
        config.log_level = str(agent["log_level"]).upper()

    config.validate()
    logger.info(
        "load_yaml_config: provider=%s safe_commands=%d yolo=%s",
        config.default_provider,
        len(config.permissions.safe_commands),
        config.permissions.approve_everything,
    )
    return config
