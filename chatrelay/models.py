"""
Model registry.

Maps each logical model name to its provider, provider-native wire id, the
alternate OpenRouter id, and its reasoning capabilities.  A model can be looked
up by logical name, by wire id, or by OpenRouter id.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Mapping

from chatrelay.types import MissingCredentialError, UnknownModelError


class Providers:
    OPENAI = "openai"
    GOOGLE = "google"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"

    ALL = (OPENAI, GOOGLE, ANTHROPIC, OPENROUTER)


@dataclass(frozen=True)
class ModelConfig:
    name: str
    provider: str
    model_id: str
    openrouter_model_id: str | None = None
    supports_reasoning: bool = False
    can_toggle_thinking: bool = False
    context_window: int = 128_000
    reluctant_tool_user: bool = False
    free_with_host_key: bool = False
    using_host_key: bool = False

    def wants_reasoning(self, thinking_enabled: bool) -> bool:
        """Reasoning is requested when enabled, or always when it cannot be toggled."""
        return self.supports_reasoning and (
            thinking_enabled or not self.can_toggle_thinking
        )


MODEL_CONFIGS: dict[str, ModelConfig] = {
    cfg.name: cfg
    for cfg in (
        ModelConfig(
            name="Gemini 2.5 Pro",
            provider=Providers.GOOGLE,
            model_id="gemini-2.5-pro-preview-05-06",
            openrouter_model_id="google/gemini-2.5-pro",
            supports_reasoning=True,
            can_toggle_thinking=False,
            context_window=1_048_576,
            reluctant_tool_user=True,
        ),
        ModelConfig(
            name="Gemini 2.5 Flash",
            provider=Providers.GOOGLE,
            model_id="gemini-2.5-flash-preview-04-17",
            openrouter_model_id="google/gemini-2.5-flash",
            supports_reasoning=True,
            can_toggle_thinking=False,
            context_window=1_048_576,
            reluctant_tool_user=True,
            free_with_host_key=True,
        ),
        ModelConfig(
            name="Gemini 2.5 Flash-Lite Preview",
            provider=Providers.GOOGLE,
            model_id="gemini-2.5-flash-lite-preview-06-17",
            openrouter_model_id="google/gemini-2.5-flash-lite-preview-06-17",
            context_window=128_000,
            reluctant_tool_user=True,
            free_with_host_key=True,
        ),
        ModelConfig(
            name="Claude 4 Sonnet",
            provider=Providers.ANTHROPIC,
            model_id="claude-4-sonnet-20250514",
            openrouter_model_id="anthropic/claude-sonnet-4",
            supports_reasoning=True,
            can_toggle_thinking=True,
            context_window=200_000,
        ),
        ModelConfig(
            name="Claude Haiku 3.5",
            provider=Providers.ANTHROPIC,
            model_id="claude-3-5-haiku-20241022",
            openrouter_model_id="anthropic/claude-3.5-haiku",
            context_window=200_000,
        ),
        ModelConfig(
            name="Claude 4 Opus",
            provider=Providers.ANTHROPIC,
            model_id="claude-4-opus-20250514",
            openrouter_model_id="anthropic/claude-opus-4",
            supports_reasoning=True,
            can_toggle_thinking=True,
            context_window=200_000,
        ),
        ModelConfig(
            name="GPT-4.1",
            provider=Providers.OPENAI,
            model_id="gpt-4.1",
            openrouter_model_id="openai/gpt-4.1",
            context_window=1_047_576,
        ),
        ModelConfig(
            name="GPT-4.1-mini",
            provider=Providers.OPENAI,
            model_id="gpt-4.1-mini",
            openrouter_model_id="openai/gpt-4.1-mini",
            context_window=1_047_576,
        ),
        ModelConfig(
            name="GPT-4.1-nano",
            provider=Providers.OPENAI,
            model_id="gpt-4.1-nano",
            openrouter_model_id="openai/gpt-4.1-nano",
            context_window=1_047_576,
        ),
        ModelConfig(
            name="o3",
            provider=Providers.OPENROUTER,
            model_id="openai/o3",
            openrouter_model_id="openai/o3",
            context_window=200_000,
        ),
        ModelConfig(
            name="o4-mini",
            provider=Providers.OPENAI,
            model_id="o4-mini-2025-04-16",
            openrouter_model_id="openai/o4-mini",
            supports_reasoning=True,
            can_toggle_thinking=False,
            context_window=200_000,
        ),
        ModelConfig(
            name="DeepSeek R1",
            provider=Providers.OPENROUTER,
            model_id="deepseek/deepseek-r1",
            openrouter_model_id="deepseek/deepseek-r1",
            supports_reasoning=True,
            can_toggle_thinking=True,
            context_window=32_000,
        ),
    )
}

AI_MODELS: tuple[str, ...] = tuple(MODEL_CONFIGS)


def find_model_config(model: str) -> ModelConfig | None:
    """Look a model up by logical name, wire id, or OpenRouter id."""
    if model in MODEL_CONFIGS:
        return MODEL_CONFIGS[model]
    for cfg in MODEL_CONFIGS.values():
        if cfg.model_id == model:
            return cfg
    for cfg in MODEL_CONFIGS.values():
        if cfg.openrouter_model_id == model:
            return cfg
    return None


def resolve(model: str) -> ModelConfig:
    """Like ``find_model_config`` but raises ``UnknownModelError``."""
    cfg = find_model_config(model)
    if cfg is None:
        raise UnknownModelError(model)
    return cfg


# ---------------------------------------------------------------------------
# Credential / provider precedence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveModel:
    """The route a turn will actually take: provider, wire id, and key."""

    config: ModelConfig
    provider: str
    model_id: str
    credential: str | None
    using_host_key: bool = False


def resolve_credential_and_provider(
    model_name: str,
    user_keys: Mapping[str, str | None] | Callable[[str], str | None],
    host_google_key: str | None = None,
) -> EffectiveModel:
    """
    Pick the provider route and credential for *model_name*.

    Priority:

    1. The user's key for the model's native provider.
    2. The user's OpenRouter key, routed through the OpenRouter model id
       (capability flags are kept).
    3. The host Google key, only for free Google models.

    Raises ``MissingCredentialError`` when none applies.
    """
    base = resolve(model_name)
    get_key = user_keys if callable(user_keys) else user_keys.get

    native_key = get_key(base.provider)
    if native_key:
        return EffectiveModel(base, base.provider, base.model_id, native_key)

    openrouter_key = get_key(Providers.OPENROUTER)
    if openrouter_key and base.openrouter_model_id:
        routed = replace(
            base,
            provider=Providers.OPENROUTER,
            model_id=base.openrouter_model_id,
        )
        return EffectiveModel(
            routed, Providers.OPENROUTER, base.openrouter_model_id, openrouter_key
        )

    if (
        base.provider == Providers.GOOGLE
        and host_google_key
        and base.free_with_host_key
    ):
        hosted = replace(base, using_host_key=True)
        return EffectiveModel(
            hosted, Providers.GOOGLE, base.model_id, host_google_key,
            using_host_key=True,
        )

    raise MissingCredentialError(
        base.provider,
        f"Add a {base.provider} or openrouter API key to use {base.name}.",
    )


def is_model_available(
    model_name: str,
    user_keys: Mapping[str, str | None] | Callable[[str], str | None],
    host_google_key: str | None = None,
) -> bool:
    try:
        resolve_credential_and_provider(model_name, user_keys, host_google_key)
    except MissingCredentialError:
        return False
    return True
