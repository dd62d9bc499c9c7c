"""Append-only conversation state owned by the agent loop.

Enforces the one invariant vendor APIs rely on: a tool-result message
may only answer invocations from the assistant message immediately
before it.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from .models import Message, Role, ToolInvocation, ToolResult

logger = logging.getLogger(__name__)


class Conversation:
    """Ordered message list. Messages are never mutated after append.

    Thread-safe for single-event-loop usage.
    """

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = []
        for message in messages or ():
            self.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, message: Message) -> None:
        """Append *message*, validating tool-result references."""
        if message.role == Role.TOOL:
            self._check_tool_results(message.tool_results)
        self._messages.append(message)

    def _check_tool_results(self, results: tuple[ToolResult, ...]) -> None:
        previous = self.last
        if previous is None or previous.role != Role.ASSISTANT:
            raise ValueError(
                "Tool results must directly follow an assistant message"
            )
        known = {call.id for call in previous.tool_calls}
        unknown = [r.invocation_id for r in results if r.invocation_id not in known]
        if unknown:
            raise ValueError(
                f"Tool results reference unknown invocations: {', '.join(unknown)}"
            )

    def add_system(self, content: str) -> Message:
        message = Message(role=Role.SYSTEM, content=content)
        self.append(message)
        return message

    def add_user(self, content: str) -> Message:
        message = Message(role=Role.USER, content=content)
        self.append(message)
        return message

    def add_assistant(
        self,
        content: str,
        tool_calls: Iterable[ToolInvocation] = (),
    ) -> Message:
        message = Message(
            role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls),
        )
        self.append(message)
        return message

    def add_tool_results(self, results: Iterable[ToolResult]) -> Message:
        message = Message(role=Role.TOOL, content="", tool_results=tuple(results))
        self.append(message)
        return message

    def clear(self, keep_system: bool = True) -> None:
        """Drop the conversation, keeping system messages by default."""
        if keep_system:
            self._messages = [m for m in self._messages if m.role == Role.SYSTEM]
        else:
            self._messages = []
        logger.debug("Conversation cleared (%d messages kept)", len(self._messages))

    def to_list(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_list(cls, data: Iterable[dict[str, Any]]) -> Conversation:
        return cls(Message.from_dict(item) for item in data)

    def to_json(self) -> str:
        return json.dumps(self.to_list())

    @classmethod
    def from_json(cls, text: str) -> Conversation:
        return cls.from_list(json.loads(text))
