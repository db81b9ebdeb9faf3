"""Tests for the model registry and credential/provider precedence."""

from __future__ import annotations

import pytest

from chatrelay.models import (
    AI_MODELS,
    MODEL_CONFIGS,
    Providers,
    find_model_config,
    is_model_available,
    resolve,
    resolve_credential_and_provider,
)
from chatrelay.types import MissingCredentialError, UnknownModelError


class TestLookup:
    def test_every_model_has_a_known_provider(self):
        assert AI_MODELS
        for cfg in MODEL_CONFIGS.values():
            assert cfg.provider in Providers.ALL

    def test_lookup_by_name_wire_id_and_openrouter_id(self):
        by_name = find_model_config("Claude 4 Sonnet")
        assert by_name is not None
        assert find_model_config(by_name.model_id) is by_name
        assert find_model_config(by_name.openrouter_model_id) is by_name

    def test_unknown_model(self):
        assert find_model_config("gpt-0") is None
        with pytest.raises(UnknownModelError, match="gpt-0"):
            resolve("gpt-0")


class TestReasoningFlags:
    def test_togglable_model_needs_thinking_enabled(self):
        cfg = resolve("Claude 4 Sonnet")
        assert cfg.wants_reasoning(False) is False
        assert cfg.wants_reasoning(True) is True

    def test_always_on_model(self):
        assert resolve("Gemini 2.5 Pro").wants_reasoning(False) is True

    def test_non_reasoning_model(self):
        assert resolve("GPT-4.1").wants_reasoning(True) is False


class TestCredentialPrecedence:
    def test_native_key_wins(self):
        eff = resolve_credential_and_provider(
            "Claude 4 Sonnet",
            {Providers.ANTHROPIC: "sk-ant", Providers.OPENROUTER: "sk-or"},
        )
        assert eff.provider == Providers.ANTHROPIC
        assert eff.credential == "sk-ant"
        assert eff.model_id == "claude-4-sonnet-20250514"

    def test_openrouter_fallback_keeps_capabilities(self):
        eff = resolve_credential_and_provider(
            "Claude 4 Sonnet", {Providers.OPENROUTER: "sk-or"}
        )
        assert eff.provider == Providers.OPENROUTER
        assert eff.model_id == "anthropic/claude-sonnet-4"
        assert eff.config.supports_reasoning is True
        assert eff.config.can_toggle_thinking is True
        assert eff.config.name == "Claude 4 Sonnet"

    def test_host_key_only_for_free_google_models(self):
        eff = resolve_credential_and_provider("Gemini 2.5 Flash", {}, "host-key")
        assert eff.provider == Providers.GOOGLE
        assert eff.credential == "host-key"
        assert eff.using_host_key is True

        with pytest.raises(MissingCredentialError):
            resolve_credential_and_provider("Gemini 2.5 Pro", {}, "host-key")

    def test_no_credential(self):
        with pytest.raises(MissingCredentialError, match="GPT-4.1"):
            resolve_credential_and_provider("GPT-4.1", {})

    def test_callable_key_lookup(self):
        keys = {Providers.OPENAI: "sk-openai"}
        assert is_model_available("GPT-4.1", keys.get)
        assert not is_model_available("Claude 4 Opus", keys.get)
