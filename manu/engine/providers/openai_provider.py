"""OpenAI Chat Completions provider.

Tool-call deltas are keyed by ``index``. The id and name usually come
with the first delta for an index; arguments trickle in afterwards.
A chunk carrying a ``finish_reason`` closes every open call in index
order. With ``include_usage`` the final chunk has no choices and
carries the token totals.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import openai

from ..errors import ProviderError
from ..events import Done, StreamEvent, TextFragment, Usage
from ..models import BlockType, Message, Role, TokenUsage, make_call_id
from ..tools.base import ToolDefinition
from .base import ChatOptions, ModelInfo, Provider, ToolCallAccumulator

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"

MODELS = [
    ModelInfo("gpt-4o", "GPT-4o", 128000, 16384),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini", 128000, 16384),
    ModelInfo("gpt-4-turbo", "GPT-4 Turbo", 128000, 4096),
    ModelInfo("o1", "O1", 200000, 100000),
    ModelInfo("o1-mini", "O1 Mini", 128000, 65536),
]


@dataclass
class _Unnamed:
    """Deltas for an index whose function name has not arrived yet."""
    id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)


class OpenAIStreamNormalizer:
    """OpenAI chat completion chunks -> canonical events."""

    def __init__(self) -> None:
        self._calls = ToolCallAccumulator(PROVIDER_NAME)
        self._unnamed: dict[int, _Unnamed] = {}
        self._usage = TokenUsage()
        self._stop_reason: str | None = None

    def feed(self, chunk: Any) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        usage = getattr(chunk, "usage", None)
        if usage is not None:
            self._usage = TokenUsage(
                getattr(usage, "prompt_tokens", 0) or 0,
                getattr(usage, "completion_tokens", 0) or 0,
            )
        for choice in getattr(chunk, "choices", None) or []:
            delta = getattr(choice, "delta", None)
            if delta is not None:
                content = getattr(delta, "content", None)
                if content:
                    events.append(TextFragment(text=content))
                for tool_delta in getattr(delta, "tool_calls", None) or []:
                    events.extend(self._on_tool_delta(tool_delta))
            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason:
                self._stop_reason = finish_reason
                events.extend(self._close_all())
        return events

    def _on_tool_delta(self, tool_delta: Any) -> list[StreamEvent]:
        index = getattr(tool_delta, "index", None) or 0
        function = getattr(tool_delta, "function", None)
        name = getattr(function, "name", None) if function is not None else None
        arguments = getattr(function, "arguments", None) if function is not None else None

        if self._calls.is_open(index):
            fragment = self._calls.append(index, arguments or "")
            return [fragment] if fragment is not None else []

        entry = self._unnamed.setdefault(index, _Unnamed())
        if getattr(tool_delta, "id", None):
            entry.id = tool_delta.id
        if name:
            entry.name += name
        if arguments:
            entry.fragments.append(arguments)
        if not entry.name:
            return []

        del self._unnamed[index]
        events: list[StreamEvent] = [
            self._calls.open(index, entry.id or make_call_id("call"), entry.name),
        ]
        fragment = self._calls.append(index, "".join(entry.fragments))
        if fragment is not None:
            events.append(fragment)
        return events

    def _close_all(self) -> list[StreamEvent]:
        for index in sorted(self._unnamed):
            logger.warning(
                "Dropping tool call without a function name provider=%s index=%s",
                PROVIDER_NAME, index,
            )
        self._unnamed.clear()
        return self._calls.close_all()

    def finish(self) -> list[StreamEvent]:
        events = self._close_all()
        events.append(Usage(
            input_tokens=self._usage.input_tokens,
            output_tokens=self._usage.output_tokens,
        ))
        events.append(Done(usage=self._usage, stop_reason=self._stop_reason))
        return events


def _user_content(message: Message) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if block.type == BlockType.TEXT and block.text:
            parts.append({"type": "text", "text": block.text})
        elif block.type == BlockType.IMAGE and block.image is not None:
            parts.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{block.image.media_type};base64,{block.image.base64}",
                },
            })
    return parts


def format_messages(
    messages: list[Message], system_prompt: str | None = None,
) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})
    for message in messages:
        if message.role == Role.SYSTEM:
            converted.append({"role": "system", "content": message.text})
        elif message.role == Role.TOOL:
            for result in message.tool_results:
                converted.append({
                    "role": "tool",
                    "tool_call_id": result.invocation_id,
                    "content": result.output,
                })
        elif message.role == Role.ASSISTANT:
            entry: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.input),
                        },
                    }
                    for call in message.tool_calls
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            converted.append(entry)
        else:
            converted.append({"role": "user", "content": _user_content(message)})
    return converted


class OpenAIProvider(Provider):
    """Streams from the Chat Completions API via ``openai.AsyncOpenAI``."""

    models = MODELS
    default_model = "gpt-4o"
    default_api_key_env = "OPENAI_API_KEY"

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def new_normalizer(self) -> OpenAIStreamNormalizer:
        return OpenAIStreamNormalizer()

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self.api_key()
            if api_key is None:
                raise ProviderError(PROVIDER_NAME, f"{self.api_key_env} is not set")
            kwargs: dict[str, Any] = {"api_key": api_key}
            if self.settings.base_url:
                kwargs["base_url"] = self.settings.base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        return self._client

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def _open_stream(
        self, messages: list[Message], options: ChatOptions,
    ) -> Any:
        client = self._get_client()
        converted = format_messages(messages, options.system_prompt)
        kwargs: dict[str, Any] = {
            "model": options.model or self.model,
            "messages": converted,
            "max_tokens": options.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if options.tools:
            kwargs["tools"] = self.format_tools(options.tools)
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        logger.debug(
            "openai request model=%s messages=%d tools=%d",
            kwargs["model"], len(converted), len(options.tools),
        )
        return await client.chat.completions.create(**kwargs)
