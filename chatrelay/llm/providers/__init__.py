"""Provider adapters, one per upstream wire protocol."""

from chatrelay.llm.providers.anthropic import AnthropicProvider
from chatrelay.llm.providers.base import Provider, ProviderEvent
from chatrelay.llm.providers.google import GoogleProvider
from chatrelay.llm.providers.openai import OpenAIProvider
from chatrelay.llm.providers.openrouter import OpenRouterProvider
from chatrelay.models import Providers

PROVIDER_CLASSES: dict[str, type[Provider]] = {
    Providers.OPENAI: OpenAIProvider,
    Providers.ANTHROPIC: AnthropicProvider,
    Providers.GOOGLE: GoogleProvider,
    Providers.OPENROUTER: OpenRouterProvider,
}

__all__ = [
    "AnthropicProvider",
    "GoogleProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "PROVIDER_CLASSES",
    "Provider",
    "ProviderEvent",
]
