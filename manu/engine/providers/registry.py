"""Provider registry: maps provider names to Provider instances."""
from __future__ import annotations

import logging

from ..config import PROVIDER_NAMES, AppConfig, ProviderSettings
from ..errors import ProviderNotAvailableError
from .base import Provider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of model providers.

    Maps short names (e.g. 'anthropic', 'openai') to Provider instances.
    """

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        """Register a provider by name."""
        self._providers[name] = provider
        logger.info(
            "Provider registered: %s (available=%s)",
            name,
            provider.is_available(),
        )

    def get(self, name: str) -> Provider | None:
        """Get a provider by name, or None if not registered."""
        return self._providers.get(name)

    def get_or_raise(self, name: str) -> Provider:
        """Get a provider by name, raising if it is not registered."""
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotAvailableError(name, self.list_names())
        return provider

    def list_names(self) -> list[str]:
        """Return all registered provider names."""
        return list(self._providers.keys())

    def list_available(self) -> list[str]:
        """Return names of providers whose API key is configured."""
        return [
            name for name, p in self._providers.items()
            if p.is_available()
        ]

    async def shutdown_all(self) -> None:
        """Shut down all registered providers."""
        for name, provider in self._providers.items():
            try:
                await provider.shutdown()
            except Exception as exc:
                logger.error(
                    "Error shutting down provider '%s': %s",
                    name, exc,
                )


def build_provider(name: str, settings: ProviderSettings | None = None) -> Provider:
    """Instantiate the provider called *name*."""
    from .anthropic_provider import AnthropicProvider
    from .gemini_provider import GeminiProvider
    from .openai_provider import OpenAIProvider

    if name == "anthropic":
        return AnthropicProvider(settings)
    if name == "openai":
        return OpenAIProvider(settings)
    if name == "gemini":
        return GeminiProvider(settings)
    raise ProviderNotAvailableError(name, list(PROVIDER_NAMES))


def build_provider_registry(config: AppConfig) -> ProviderRegistry:
    """Registry holding every known provider, configured from *config*."""
    registry = ProviderRegistry()
    for name in PROVIDER_NAMES:
        registry.register(name, build_provider(name, config.providers.get(name)))
    return registry


def select_provider(
    registry: ProviderRegistry,
    preferred: str,
    *,
    explicit: bool = False,
) -> Provider:
    """Pick the provider to use for this session.

    An explicitly requested provider must be usable. Otherwise the
    configured default is used when its key is set, falling back to the
    first available provider in registration order
    (anthropic, openai, gemini).
    """
    available = registry.list_available()
    provider = registry.get(preferred)
    if provider is not None and provider.is_available():
        logger.info("Provider selected: %s", preferred)
        return provider
    if explicit or not available:
        raise ProviderNotAvailableError(preferred, available)
    fallback = available[0]
    logger.info(
        "Provider %s has no API key configured; falling back to %s",
        preferred, fallback,
    )
    return registry.get_or_raise(fallback)
