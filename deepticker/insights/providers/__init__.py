"""AI provider adapters and their registry."""

from deepticker.insights.providers.base import InsightProvider
from deepticker.insights.providers.claude import ClaudeProvider
from deepticker.insights.providers.openai_compatible import OpenAICompatibleProvider
from deepticker.insights.providers.registry import ProviderRegistry, default_registry

__all__ = [
    "ClaudeProvider",
    "InsightProvider",
    "OpenAICompatibleProvider",
    "ProviderRegistry",
    "default_registry",
]
