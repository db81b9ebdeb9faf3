"""
OpenRouter provider.

OpenRouter fronts many vendors behind the OpenAI wire format.  Reasoning is
requested with the flat ``reasoning: {"max_tokens": N}`` field and streamed
back in ``delta.reasoning``.
"""

from __future__ import annotations

from chatrelay.llm.providers.openai import OpenAIProvider
from chatrelay.llm.types import ProviderOptions
from chatrelay.models import Providers


class OpenRouterProvider(OpenAIProvider):
    default_url = "https://openrouter.ai/api/v1"
    max_tokens_field = "max_tokens"

    @property
    def name(self) -> str:
        return Providers.OPENROUTER

    def apply_reasoning(self, body: dict, options: ProviderOptions) -> None:
        if options.reasoning:
            body["reasoning"] = {"max_tokens": options.reasoning_budget_tokens}

    def reasoning_from_delta(self, delta: dict) -> str | None:
        return delta.get("reasoning") or None
