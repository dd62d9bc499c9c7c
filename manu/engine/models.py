"""Core data models for the agent loop.

All dataclasses and enums shared by providers, tools, permissions
and the loop itself. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Conversation roles. TOOL carries tool results back to the model."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class BlockType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class PermissionTier(str, Enum):
    """Default permission classification of a tool."""
    AUTO = "auto"
    ASK = "ask"
    DENY = "deny"


class ToolCategory(str, Enum):
    """Drives cache keys and dangerous-command screening."""
    FILE = "file"
    SHELL = "shell"
    OTHER = "other"


def make_call_id(prefix: str = "call") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ToolInvocation:
    """A single tool call proposed by the model. Immutable once built."""
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": dict(self.input)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolInvocation:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            input=dict(data.get("input") or {}),
        )


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one invocation: success, failure or refusal."""
    invocation_id: str
    output: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "invocation_id": self.invocation_id,
            "output": self.output,
            "is_error": self.is_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResult:
        return cls(
            invocation_id=str(data["invocation_id"]),
            output=str(data.get("output", "")),
            is_error=bool(data.get("is_error", False)),
        )


@dataclass(frozen=True)
class ImageData:
    base64: str
    media_type: str


@dataclass(frozen=True)
class ContentBlock:
    type: BlockType
    text: str | None = None
    image: ImageData | None = None
    tool_use: ToolInvocation | None = None
    tool_result: ToolResult | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.text is not None:
            data["text"] = self.text
        if self.image is not None:
            data["image"] = {
                "base64": self.image.base64,
                "media_type": self.image.media_type,
            }
        if self.tool_use is not None:
            data["tool_use"] = self.tool_use.to_dict()
        if self.tool_result is not None:
            data["tool_result"] = self.tool_result.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentBlock:
        image = data.get("image")
        tool_use = data.get("tool_use")
        tool_result = data.get("tool_result")
        return cls(
            type=BlockType(data["type"]),
            text=data.get("text"),
            image=ImageData(image["base64"], image["media_type"]) if image else None,
            tool_use=ToolInvocation.from_dict(tool_use) if tool_use else None,
            tool_result=ToolResult.from_dict(tool_result) if tool_result else None,
        )


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    ``content`` is plain text or a list of typed blocks. Assistant
    messages may carry ``tool_calls``; tool messages carry
    ``tool_results`` answering the preceding assistant message.
    """
    role: Role
    content: str | tuple[ContentBlock, ...] = ""
    tool_calls: tuple[ToolInvocation, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            b.text for b in self.content
            if b.type == BlockType.TEXT and b.text
        )

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [b.to_dict() for b in self.content]
        data: dict[str, Any] = {"role": self.role.value, "content": content}
        if self.tool_calls:
            data["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.tool_results:
            data["tool_results"] = [r.to_dict() for r in self.tool_results]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        raw_content = data.get("content", "")
        if isinstance(raw_content, list):
            content: str | tuple[ContentBlock, ...] = tuple(
                ContentBlock.from_dict(b) for b in raw_content
            )
        else:
            content = str(raw_content or "")
        return cls(
            role=Role(data["role"]),
            content=content,
            tool_calls=tuple(
                ToolInvocation.from_dict(c) for c in data.get("tool_calls") or []
            ),
            tool_results=tuple(
                ToolResult.from_dict(r) for r in data.get("tool_results") or []
            ),
        )


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class TurnState(str, Enum):
    """Agent loop states. See lifecycle.py for transition rules."""
    AWAITING_MODEL = "awaiting_model"
    HAS_PENDING_CALLS = "has_pending_calls"
    DISPATCHING_CALLS = "dispatching_calls"
    TURN_COMPLETE = "turn_complete"
    ERROR = "error"
    CANCELLED = "cancelled"
