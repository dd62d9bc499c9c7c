"""Google Gemini provider (google-genai SDK).

Gemini delivers each function call whole inside a content part and
assigns no call ids, so a local ``gemini-<hex>`` id is generated. The
call still goes through the shared accumulator (start, one argument
fragment, close) so downstream sees the same event shape as for the
other vendors. ``usage_metadata`` is cumulative; the last chunk wins.
"""
from __future__ import annotations

import base64
import json
import logging
import uuid
from typing import Any

from google import genai
from google.genai import types

from ..errors import ProviderError
from ..events import Done, StreamEvent, TextFragment, Usage
from ..models import BlockType, Message, Role, TokenUsage
from ..tools.base import ToolDefinition
from .base import ChatOptions, ModelInfo, Provider, ToolCallAccumulator

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gemini"

MODELS = [
    ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", 1048576, 8192),
    ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", 2097152, 8192),
    ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", 1048576, 8192),
]


def make_gemini_call_id() -> str:
    return f"gemini-{uuid.uuid4().hex[:12]}"


class GeminiStreamNormalizer:
    """GenerateContentResponse chunks -> canonical events."""

    def __init__(self) -> None:
        self._calls = ToolCallAccumulator(PROVIDER_NAME)
        self._next_key = 0
        self._usage = TokenUsage()
        self._stop_reason: str | None = None

    def feed(self, chunk: Any) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        usage = getattr(chunk, "usage_metadata", None)
        if usage is not None:
            self._usage = TokenUsage(
                getattr(usage, "prompt_token_count", 0) or 0,
                getattr(usage, "candidates_token_count", 0) or 0,
            )
        for candidate in getattr(chunk, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                events.extend(self._on_part(part))
            finish_reason = getattr(candidate, "finish_reason", None)
            if finish_reason:
                self._stop_reason = getattr(finish_reason, "value", None) or str(finish_reason)
        return events

    def _on_part(self, part: Any) -> list[StreamEvent]:
        if getattr(part, "thought", None):
            return []
        function_call = getattr(part, "function_call", None)
        if function_call is not None and getattr(function_call, "name", None):
            key = self._next_key
            self._next_key += 1
            call_id = getattr(function_call, "id", None) or make_gemini_call_id()
            events: list[StreamEvent] = [self._calls.open(key, call_id, function_call.name)]
            args = getattr(function_call, "args", None)
            fragment = self._calls.append(key, json.dumps(dict(args or {}), default=str))
            if fragment is not None:
                events.append(fragment)
            complete = self._calls.close(key)
            if complete is not None:
                events.append(complete)
            return events
        text = getattr(part, "text", None)
        return [TextFragment(text=text)] if text else []

    def finish(self) -> list[StreamEvent]:
        events = self._calls.close_all()
        events.append(Usage(
            input_tokens=self._usage.input_tokens,
            output_tokens=self._usage.output_tokens,
        ))
        events.append(Done(usage=self._usage, stop_reason=self._stop_reason))
        return events


def _upper_types(schema: Any) -> Any:
    """Gemini schemas spell types in upper case (OBJECT, STRING, ...)."""
    if isinstance(schema, dict):
        converted = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                converted[key] = value.upper()
            else:
                converted[key] = _upper_types(value)
        return converted
    if isinstance(schema, list):
        return [_upper_types(item) for item in schema]
    return schema


def _user_parts(message: Message) -> list[types.Part]:
    if isinstance(message.content, str):
        return [types.Part(text=message.content)] if message.content else []
    parts: list[types.Part] = []
    for block in message.content:
        if block.type == BlockType.TEXT and block.text:
            parts.append(types.Part(text=block.text))
        elif block.type == BlockType.IMAGE and block.image is not None:
            parts.append(types.Part(inline_data=types.Blob(
                mime_type=block.image.media_type,
                data=base64.b64decode(block.image.base64),
            )))
    return parts


def format_messages(
    messages: list[Message], system_prompt: str | None = None,
) -> tuple[str | None, list[types.Content]]:
    """Convert history to Gemini contents.

    Function responses must carry the function name, which tool results
    do not store; it is resolved from the invocation with the same id.
    """
    system_parts = [system_prompt] if system_prompt else []
    names_by_id: dict[str, str] = {}
    contents: list[types.Content] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            if message.text:
                system_parts.append(message.text)
        elif message.role == Role.ASSISTANT:
            parts = [types.Part(text=message.text)] if message.text else []
            for call in message.tool_calls:
                names_by_id[call.id] = call.name
                parts.append(types.Part(function_call=types.FunctionCall(
                    name=call.name, args=dict(call.input),
                )))
            if parts:
                contents.append(types.Content(role="model", parts=parts))
        elif message.role == Role.TOOL:
            parts = []
            for result in message.tool_results:
                key = "error" if result.is_error else "output"
                parts.append(types.Part(function_response=types.FunctionResponse(
                    name=names_by_id.get(result.invocation_id, "unknown"),
                    response={key: result.output},
                )))
            contents.append(types.Content(role="user", parts=parts))
        else:
            parts = _user_parts(message)
            if parts:
                contents.append(types.Content(role="user", parts=parts))
    system = "\n\n".join(system_parts) if system_parts else None
    return system, contents


class GeminiProvider(Provider):
    """Streams from Gemini via ``genai.Client().aio.models``."""

    models = MODELS
    default_model = "gemini-2.0-flash"
    default_api_key_env = "GOOGLE_API_KEY"

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def new_normalizer(self) -> GeminiStreamNormalizer:
        return GeminiStreamNormalizer()

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self.api_key()
            if api_key is None:
                raise ProviderError(PROVIDER_NAME, f"{self.api_key_env} is not set")
            kwargs: dict[str, Any] = {"api_key": api_key}
            if self.settings.base_url:
                kwargs["http_options"] = types.HttpOptions(base_url=self.settings.base_url)
            self._client = genai.Client(**kwargs)
        return self._client

    def format_tools(self, tools: list[ToolDefinition]) -> list[types.Tool]:
        declarations = []
        for tool in tools:
            kwargs: dict[str, Any] = {"name": tool.name, "description": tool.description}
            # OBJECT schemas without properties are rejected
            if tool.parameters.get("properties"):
                kwargs["parameters"] = _upper_types(tool.parameters)
            declarations.append(types.FunctionDeclaration(**kwargs))
        return [types.Tool(function_declarations=declarations)] if declarations else []

    async def _open_stream(
        self, messages: list[Message], options: ChatOptions,
    ) -> Any:
        client = self._get_client()
        system, contents = format_messages(messages, options.system_prompt)
        config_kwargs: dict[str, Any] = {"max_output_tokens": options.max_tokens}
        if system:
            config_kwargs["system_instruction"] = system
        if options.tools:
            config_kwargs["tools"] = self.format_tools(options.tools)
        if options.temperature is not None:
            config_kwargs["temperature"] = options.temperature
        model = options.model or self.model
        logger.debug(
            "gemini request model=%s contents=%d tools=%d",
            model, len(contents), len(options.tools),
        )
        return await client.aio.models.generate_content_stream(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )

    async def shutdown(self) -> None:
        # genai.Client has no async close; drop the reference
        self._client = None
