"""Provider abstraction over vendor streaming chat APIs."""
from .base import ChatOptions, ModelInfo, Provider, ToolCallAccumulator, normalize_stream
from .registry import (
    ProviderRegistry,
    build_provider,
    build_provider_registry,
    select_provider,
)
from .anthropic_provider import AnthropicProvider, AnthropicStreamNormalizer
from .openai_provider import OpenAIProvider, OpenAIStreamNormalizer
from .gemini_provider import GeminiProvider, GeminiStreamNormalizer

__all__ = [
    "ChatOptions",
    "ModelInfo",
    "Provider",
    "ToolCallAccumulator",
    "normalize_stream",
    "ProviderRegistry",
    "build_provider",
    "build_provider_registry",
    "select_provider",
    "AnthropicProvider",
    "AnthropicStreamNormalizer",
    "OpenAIProvider",
    "OpenAIStreamNormalizer",
    "GeminiProvider",
    "GeminiStreamNormalizer",
]
