"""Exception hierarchy for the agent engine.

Raised at contract violations. Converted to stream errors or
error results at the adapter and dispatch boundaries.
"""
from __future__ import annotations


class ManuError(Exception):
    """Base exception for all engine errors."""


class ProviderError(ManuError):
    """A vendor request failed before or during streaming."""
    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Provider '{provider}' failed: {reason}")


class ProviderNotAvailableError(ManuError):
    """Requested provider is unknown or has no credentials."""
    def __init__(self, provider: str, available: list[str] | None = None):
        self.provider = provider
        self.available = list(available or [])
        available_str = ", ".join(self.available) or "none"
        super().__init__(
            f"Provider '{provider}' is not available "
            f"(available: {available_str})"
        )


class ToolError(ManuError):
    """Base for tool lookup and execution failures."""
    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Tool '{tool_name}': {reason}")


class ToolNotFoundError(ToolError):
    """No tool with this name is registered."""
    def __init__(self, tool_name: str):
        super().__init__(tool_name, "not registered")


class ToolTimeoutError(ToolError):
    """A tool exceeded its deadline and was terminated."""
    def __init__(self, tool_name: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            tool_name,
            f"timed out after {timeout_seconds:g}s and was terminated",
        )


class ConfigError(ManuError):
    """Configuration file or value is malformed."""
    def __init__(self, reason: str, source: str | None = None):
        self.reason = reason
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"Invalid configuration{where}: {reason}")
