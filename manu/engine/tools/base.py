"""Tool definition contract and helpers shared by tool bodies."""
from __future__ import annotations

import fnmatch
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..models import PermissionTier, ToolCategory

MAX_OUTPUT_CHARS = 12000


@dataclass
class ToolContext:
    """Ambient state a tool body may depend on."""
    cwd: str = field(default_factory=os.getcwd)
    project_root: str | None = None
    ignore_patterns: list[str] = field(default_factory=list)

    @property
    def root(self) -> str:
        return self.project_root or self.cwd


@dataclass(frozen=True)
class ToolOutput:
    """What a tool body returns. ``is_error`` marks an expected failure."""
    text: str
    is_error: bool = False


def ok(text: str) -> ToolOutput:
    """Format a successful text response."""
    return ToolOutput(text)


def fail(text: str) -> ToolOutput:
    """Format an error response."""
    return ToolOutput(text, is_error=True)


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolOutput]]


@dataclass(frozen=True)
class ToolDefinition:
    """Static description of one tool. Read-only once registered.

    ``timeout_param`` names a parameter the model may use to request a
    longer or shorter deadline (seconds). ``timeout_seconds`` is the
    tool's own default; ``None`` defers to the registry default.
    """
    name: str
    description: str
    parameters: dict[str, Any]
    tier: PermissionTier
    handler: ToolHandler = field(repr=False, compare=False)
    category: ToolCategory = ToolCategory.OTHER
    timeout_seconds: float | None = None
    timeout_param: str | None = None

    def schema(self) -> dict[str, Any]:
        """Vendor-neutral catalog entry (JSON schema parameters)."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def object_schema(
    properties: dict[str, dict[str, Any]],
    required: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(required or []),
    }


def resolve_path(raw: str, ctx: ToolContext) -> Path:
    """Resolve *raw* against the project root unless it is absolute."""
    path = Path(os.path.expanduser(raw))
    if path.is_absolute():
        return path
    return (Path(ctx.root) / path).resolve()


def should_ignore(name: str, ignore_patterns: list[str]) -> bool:
    """Hidden entries and configured patterns are skipped when walking."""
    if name.startswith("."):
        return True
    for pattern in ignore_patterns:
        if any(ch in pattern for ch in "*?["):
            if fnmatch.fnmatch(name, pattern):
                return True
        elif name == pattern:
            return True
    return False


def trim_output(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    omitted = len(text) - limit
    return f"{text[:limit]}\n... [truncated {omitted} chars]"


def param_int(params: dict[str, Any], key: str, default: int) -> int:
    value = params.get(key)
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def param_str(params: dict[str, Any], key: str) -> str:
    """Fetch a required string parameter or raise ValueError."""
    value = params.get(key)
    if not isinstance(value, str) or value == "":
        raise ValueError(f"'{key}' is required and must be a non-empty string")
    return value
