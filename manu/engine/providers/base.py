"""Abstract base for model providers.

Each provider wraps one vendor's streaming chat API. The agent loop
only ever sees the canonical StreamEvent sequence produced through
``normalize_stream``; vendor chunk formats stay inside the provider
module that owns them.
"""
from __future__ import annotations

import abc
import asyncio
import inspect
import json
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from ..config import ProviderSettings
from ..events import (
    StreamError,
    StreamEvent,
    ToolCallArgumentFragment,
    ToolCallComplete,
    ToolCallStart,
)
from ..models import Message, ToolInvocation
from ..tools.base import ToolDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    max_context_tokens: int
    max_output_tokens: int


@dataclass
class ChatOptions:
    """Generation options for one model request."""
    model: str | None = None
    max_tokens: int = 8192
    temperature: float | None = None
    system_prompt: str | None = None
    tools: list[ToolDefinition] = field(default_factory=list)


@dataclass
class _PendingCall:
    id: str
    name: str
    fragments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Per-invocation argument buffers, keyed by the vendor's block key.

    Fragments are only parsed at close. A buffer that does not parse to
    a JSON object is dropped: the invocation never reaches the loop.
    """

    def __init__(self, provider: str = "") -> None:
        self._provider = provider
        self._open: dict[int, _PendingCall] = {}

    def is_open(self, key: int) -> bool:
        return key in self._open

    @property
    def has_open(self) -> bool:
        return bool(self._open)

    def open(self, key: int, call_id: str, name: str) -> ToolCallStart:
        self._open[key] = _PendingCall(id=call_id, name=name)
        return ToolCallStart(id=call_id, name=name)

    def append(self, key: int, fragment: str) -> ToolCallArgumentFragment | None:
        pending = self._open.get(key)
        if pending is None or not fragment:
            return None
        pending.fragments.append(fragment)
        return ToolCallArgumentFragment(id=pending.id, fragment=fragment)

    def close(self, key: int) -> ToolCallComplete | None:
        pending = self._open.pop(key, None)
        if pending is None:
            return None
        raw = "".join(pending.fragments)
        arguments = parse_arguments(raw)
        if arguments is None:
            logger.warning(
                "Dropping tool call with malformed arguments provider=%s "
                "tool=%s id=%s chars=%d",
                self._provider, pending.name, pending.id, len(raw),
            )
            logger.debug("Malformed tool arguments for %s: %r", pending.id, raw[:500])
            return None
        return ToolCallComplete(
            invocation=ToolInvocation(id=pending.id, name=pending.name, input=arguments),
        )

    def close_all(self) -> list[StreamEvent]:
        """Close every open call in key order."""
        events: list[StreamEvent] = []
        for key in sorted(self._open):
            event = self.close(key)
            if event is not None:
                events.append(event)
        return events


def parse_arguments(raw: str) -> dict[str, Any] | None:
    """Parse accumulated argument text. Empty means no parameters."""
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, dict):
        return None
    return value


class StreamNormalizer(Protocol):
    """Translates one vendor's native chunks into canonical events."""

    def feed(self, chunk: Any) -> list[StreamEvent]: ...

    def finish(self) -> list[StreamEvent]: ...


async def _close_quietly(stream: Any) -> None:
    closer = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if closer is None:
        return
    try:
        result = closer()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.debug("Failed to close vendor stream", exc_info=True)


async def normalize_stream(
    provider: str,
    open_stream: Callable[[], Awaitable[Any]],
    normalizer: StreamNormalizer,
) -> AsyncIterator[StreamEvent]:
    """Adapter boundary shared by every provider.

    Yields the normalizer's events in order and terminates with exactly
    one Done (from ``finish``) or exactly one StreamError. Cancellation
    is not an error and propagates.
    """
    stream: Any = None
    try:
        stream = await open_stream()
        async for chunk in stream:
            for event in normalizer.feed(chunk):
                yield event
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Provider %s stream failed: %s", provider, exc)
        yield StreamError(message=f"{provider}: {exc}", cause=exc)
        return
    finally:
        if stream is not None:
            await _close_quietly(stream)
    for event in normalizer.finish():
        yield event


class Provider(abc.ABC):
    """Abstract provider interface.

    Implementations wrap a specific vendor SDK:
    - AnthropicProvider: anthropic Messages API
    - OpenAIProvider: openai Chat Completions API
    - GeminiProvider: google-genai generate_content
    """

    models: ClassVar[list[ModelInfo]] = []
    default_model: ClassVar[str] = ""
    default_api_key_env: ClassVar[str] = ""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        client: Any = None,
    ) -> None:
        self.settings = settings or ProviderSettings(model=self.default_model)
        self._client = client

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'anthropic', 'openai')."""

    @property
    def api_key_env(self) -> str:
        return self.settings.api_key_env or self.default_api_key_env

    @property
    def model(self) -> str:
        return self.settings.model or self.default_model

    def api_key(self) -> str | None:
        return os.getenv(self.api_key_env) or None

    def is_available(self) -> bool:
        """True when an SDK client was injected or the API key is set."""
        return self._client is not None or self.api_key() is not None

    def get_max_context_tokens(self, model: str | None = None) -> int:
        model_id = model or self.model
        for info in self.models:
            if info.id == model_id:
                return info.max_context_tokens
        return self.models[0].max_context_tokens if self.models else 0

    def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one model response as canonical events."""
        return normalize_stream(
            self.name,
            lambda: self._open_stream(messages, options),
            self.new_normalizer(),
        )

    @abc.abstractmethod
    def new_normalizer(self) -> StreamNormalizer:
        """Fresh normalizer for one response."""

    @abc.abstractmethod
    async def _open_stream(
        self, messages: list[Message], options: ChatOptions,
    ) -> Any:
        """Issue the vendor request; return its async chunk iterator."""

    @abc.abstractmethod
    def format_tools(self, tools: list[ToolDefinition]) -> Any:
        """Render the tool catalog in the vendor's format."""

    async def shutdown(self) -> None:
        """Release the SDK client. Default closes it when it can."""
        if self._client is None:
            return
        await _close_quietly(self._client)
