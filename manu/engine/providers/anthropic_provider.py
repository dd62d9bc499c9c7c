"""Anthropic Messages API provider.

Streams raw server-sent events from ``messages.create(stream=True)``.
Tool-use blocks are keyed by content block index; their arguments
arrive as ``input_json_delta`` fragments and are parsed on
``content_block_stop``. Input tokens come with ``message_start``;
output tokens in ``message_delta`` are cumulative, so the last one wins.
"""
from __future__ import annotations

import logging
from typing import Any

import anthropic

from ..errors import ProviderError
from ..events import Done, StreamEvent, TextFragment, Usage
from ..models import BlockType, Message, Role, TokenUsage
from ..tools.base import ToolDefinition
from .base import ChatOptions, ModelInfo, Provider, ToolCallAccumulator

logger = logging.getLogger(__name__)

PROVIDER_NAME = "anthropic"

MODELS = [
    ModelInfo("claude-sonnet-4-20250514", "Claude Sonnet 4", 200000, 8192),
    ModelInfo("claude-opus-4-20250514", "Claude Opus 4", 200000, 8192),
    ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", 200000, 8192),
]


class AnthropicStreamNormalizer:
    """Anthropic raw stream events -> canonical events."""

    def __init__(self) -> None:
        self._calls = ToolCallAccumulator(PROVIDER_NAME)
        self._input_tokens = 0
        self._output_tokens = 0
        self._stop_reason: str | None = None

    def feed(self, event: Any) -> list[StreamEvent]:
        etype = getattr(event, "type", None)

        if etype == "message_start":
            usage = getattr(getattr(event, "message", None), "usage", None)
            if usage is not None:
                self._input_tokens = getattr(usage, "input_tokens", 0) or 0
                self._output_tokens = getattr(usage, "output_tokens", 0) or 0
            return []

        if etype == "content_block_start":
            block = event.content_block
            if getattr(block, "type", None) == "tool_use":
                return [self._calls.open(event.index, block.id, block.name)]
            text = getattr(block, "text", "") if getattr(block, "type", None) == "text" else ""
            return [TextFragment(text=text)] if text else []

        if etype == "content_block_delta":
            delta = event.delta
            dtype = getattr(delta, "type", None)
            if dtype == "text_delta":
                text = getattr(delta, "text", "")
                return [TextFragment(text=text)] if text else []
            if dtype == "input_json_delta":
                fragment = self._calls.append(event.index, getattr(delta, "partial_json", ""))
                return [fragment] if fragment is not None else []
            return []

        if etype == "content_block_stop":
            complete = self._calls.close(event.index)
            return [complete] if complete is not None else []

        if etype == "message_delta":
            usage = getattr(event, "usage", None)
            if usage is not None:
                output_tokens = getattr(usage, "output_tokens", None)
                if output_tokens is not None:
                    self._output_tokens = output_tokens
                input_tokens = getattr(usage, "input_tokens", None)
                if input_tokens:
                    self._input_tokens = input_tokens
            delta = getattr(event, "delta", None)
            self._stop_reason = getattr(delta, "stop_reason", None) or self._stop_reason
            return []

        if etype == "error":
            error = getattr(event, "error", None)
            message = getattr(error, "message", None) or str(error)
            raise ProviderError(PROVIDER_NAME, message)

        # message_stop, ping
        return []

    def finish(self) -> list[StreamEvent]:
        events = self._calls.close_all()
        usage = TokenUsage(self._input_tokens, self._output_tokens)
        events.append(Usage(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens))
        events.append(Done(usage=usage, stop_reason=self._stop_reason))
        return events


def _content_blocks(message: Message) -> list[dict[str, Any]] | str:
    if isinstance(message.content, str):
        return message.content
    blocks: list[dict[str, Any]] = []
    for block in message.content:
        if block.type == BlockType.TEXT and block.text:
            blocks.append({"type": "text", "text": block.text})
        elif block.type == BlockType.IMAGE and block.image is not None:
            blocks.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": block.image.media_type,
                    "data": block.image.base64,
                },
            })
        elif block.type == BlockType.TOOL_USE and block.tool_use is not None:
            blocks.append({
                "type": "tool_use",
                "id": block.tool_use.id,
                "name": block.tool_use.name,
                "input": dict(block.tool_use.input),
            })
        elif block.type == BlockType.TOOL_RESULT and block.tool_result is not None:
            blocks.append({
                "type": "tool_result",
                "tool_use_id": block.tool_result.invocation_id,
                "content": block.tool_result.output,
                "is_error": block.tool_result.is_error,
            })
    return blocks


def format_messages(
    messages: list[Message], system_prompt: str | None = None,
) -> tuple[str | None, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Anthropic format."""
    system_parts = [system_prompt] if system_prompt else []
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            if message.text:
                system_parts.append(message.text)
        elif message.role == Role.TOOL:
            converted.append({
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.invocation_id,
                        "content": result.output,
                        "is_error": result.is_error,
                    }
                    for result in message.tool_results
                ],
            })
        elif message.role == Role.ASSISTANT:
            content = _content_blocks(message)
            if isinstance(content, str):
                blocks = [{"type": "text", "text": content}] if content else []
            else:
                blocks = content
            for call in message.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": dict(call.input),
                })
            # Empty assistant turns are rejected by the API
            if blocks:
                converted.append({"role": "assistant", "content": blocks})
        else:
            converted.append({"role": "user", "content": _content_blocks(message)})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


class AnthropicProvider(Provider):
    """Streams from the Anthropic Messages API via ``anthropic.AsyncAnthropic``."""

    models = MODELS
    default_model = "claude-sonnet-4-20250514"
    default_api_key_env = "ANTHROPIC_API_KEY"

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def new_normalizer(self) -> AnthropicStreamNormalizer:
        return AnthropicStreamNormalizer()

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self.api_key()
            if api_key is None:
                raise ProviderError(PROVIDER_NAME, f"{self.api_key_env} is not set")
            kwargs: dict[str, Any] = {"api_key": api_key}
            if self.settings.base_url:
                kwargs["base_url"] = self.settings.base_url
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    async def _open_stream(
        self, messages: list[Message], options: ChatOptions,
    ) -> Any:
        client = self._get_client()
        system, converted = format_messages(messages, options.system_prompt)
        kwargs: dict[str, Any] = {
            "model": options.model or self.model,
            "max_tokens": options.max_tokens,
            "messages": converted,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        if options.tools:
            kwargs["tools"] = self.format_tools(options.tools)
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        logger.debug(
            "anthropic request model=%s messages=%d tools=%d",
            kwargs["model"], len(converted), len(options.tools),
        )
        return await client.messages.create(**kwargs)
