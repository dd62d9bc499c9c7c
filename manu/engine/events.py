"""Canonical stream events emitted by every provider adapter.

Each vendor's native chunks are translated into this closed set so
the agent loop never sees a vendor wire format. A well-formed stream
ends with exactly one Done or exactly one StreamError.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from .models import TokenUsage, ToolInvocation


@dataclass
class StreamEvent:
    """Base canonical event."""
    event_type: str = ""


@dataclass
class TextFragment(StreamEvent):
    event_type: str = "text"
    text: str = ""


@dataclass
class ToolCallStart(StreamEvent):
    event_type: str = "tool_call_start"
    id: str = ""
    name: str = ""


@dataclass
class ToolCallArgumentFragment(StreamEvent):
    event_type: str = "tool_call_argument"
    id: str = ""
    fragment: str = ""


@dataclass
class ToolCallComplete(StreamEvent):
    event_type: str = "tool_call_complete"
    invocation: ToolInvocation = field(
        default_factory=lambda: ToolInvocation(id="", name=""),
    )


@dataclass
class Usage(StreamEvent):
    """Authoritative token totals for one model request."""
    event_type: str = "usage"
    input_tokens: int = 0
    output_tokens: int = 0

    def to_token_usage(self) -> TokenUsage:
        return TokenUsage(self.input_tokens, self.output_tokens)


@dataclass
class Done(StreamEvent):
    event_type: str = "done"
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str | None = None


@dataclass
class StreamError(StreamEvent):
    event_type: str = "error"
    message: str = ""
    cause: BaseException | None = field(default=None, repr=False)
