"""Lookup table of insight providers keyed by provider id."""

from collections.abc import Iterator

from deepticker.errors import UnknownProviderError
from deepticker.insights.providers.base import InsightProvider
from deepticker.insights.providers.claude import ClaudeProvider
from deepticker.insights.providers.openai_compatible import (
    deepseek_provider,
    openai_provider,
    openrouter_provider,
    qwen_provider,
)


class ProviderRegistry:
    """Registered providers in registration order."""

    def __init__(self) -> None:
        self._providers: dict[str, InsightProvider] = {}

    def register(self, provider: InsightProvider) -> None:
        """Add a provider, replacing any with the same id."""
        self._providers[provider.provider_id] = provider

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def resolve(self, provider_id: str) -> InsightProvider:
        """Return the provider for an id.

        Raises:
            UnknownProviderError: If nothing is registered under the id.
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            raise UnknownProviderError(provider_id)
        return provider

    def list_ids(self) -> list[str]:
        return list(self._providers)

    def __iter__(self) -> Iterator[InsightProvider]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()


def default_registry(timeout: float = 60.0) -> ProviderRegistry:
    """Registry with every built-in provider. DeepSeek is registered first."""
    registry = ProviderRegistry()
    registry.register(deepseek_provider(timeout=timeout))
    registry.register(openai_provider(timeout=timeout))
    registry.register(openrouter_provider(timeout=timeout))
    registry.register(qwen_provider(timeout=timeout))
    registry.register(ClaudeProvider(timeout=timeout))
    return registry
