#!/usr/bin/env python3
"""
Tests for provider selection, pricing and reasoning-service calls.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

# Ensure scripts directory is on the path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "scripts"))

from exceptions import ConfigurationError
from orchestrator.llm_manager import LLMManager


class TestProviderSelection:
    def test_explicit_provider_wins(self):
        assert LLMManager({"ai_provider": "openai", "anthropic_api_key": "k"}).detect_provider() == "openai"

    @pytest.mark.parametrize(
        "config,expected",
        [
            ({"anthropic_api_key": "a", "openai_api_key": "o"}, "anthropic"),
            ({"openai_api_key": "o", "ollama_endpoint": "http://gpu:11434"}, "openai"),
            ({"ollama_endpoint": "http://gpu:11434"}, "ollama"),
            ({}, None),
        ],
    )
    def test_auto_detection_order(self, config, expected):
        assert LLMManager(config).detect_provider() == expected

    def test_default_model_per_provider(self):
        manager = LLMManager()
        assert manager.get_model_name("openai") == "gpt-4o-mini"
        assert manager.get_model_name("ollama") == "llama3.2:3b"

    def test_configured_model(self):
        assert LLMManager({"model": "gpt-4o"}).get_model_name("openai") == "gpt-4o"

    def test_initialize_without_key_fails(self):
        manager = LLMManager({"ai_provider": "anthropic"})
        assert manager.initialize() is False
        assert manager.client is None

    def test_initialize_without_provider_fails(self):
        assert LLMManager().initialize() is False

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            LLMManager()._get_client("bedrock")


class TestPricing:
    def test_longest_prefix_wins(self):
        assert LLMManager.pricing_for("gpt-4o-mini-2024-07-18", "openai")["input"] == 0.15
        assert LLMManager.pricing_for("gpt-4o-2024-08-06", "openai")["input"] == 2.50

    def test_provider_fallback(self):
        assert LLMManager.pricing_for("claude-future", "anthropic")["output"] == 5.0
        assert LLMManager.pricing_for("llama3.2:3b", "ollama")["input"] == 0.0

    def test_calculate_cost_includes_cache(self):
        cost = LLMManager.calculate_cost(
            1_000_000, 100_000, cache_read_tokens=1_000_000, cache_write_tokens=0,
            model="claude-haiku-4-5-20251001", provider="anthropic",
        )
        assert cost == pytest.approx(1.0 + 0.5 + 0.10)

    def test_estimate(self):
        cost = LLMManager.estimate_call_cost(4000, 1000, "gpt-4o-mini", "openai")
        assert cost == pytest.approx((1000 * 0.15 + 700 * 0.60) / 1_000_000)


class TestReasoningCalls:
    def test_not_initialized(self):
        with pytest.raises(ConfigurationError):
            LLMManager().call_reasoning_service("hi")

    def test_anthropic_call(self):
        manager = LLMManager({"llm_max_tokens": 512})
        manager.provider = "anthropic"
        manager.model = "claude-haiku-4-5-20251001"
        manager.client = MagicMock()
        manager.client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(text="[]")],
            usage=SimpleNamespace(
                input_tokens=1000, output_tokens=100,
                cache_read_input_tokens=0, cache_creation_input_tokens=0,
            ),
        )

        text, usage = manager.call_reasoning_service("analyze", system="rules")

        assert text == "[]"
        assert usage.input_tokens == 1000
        assert usage.cost_usd == pytest.approx((1000 * 1.0 + 100 * 5.0) / 1_000_000)
        kwargs = manager.client.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 512
        assert kwargs["system"] == [{"type": "text", "text": "rules"}]

    def test_large_system_prompt_is_cached(self):
        manager = LLMManager()
        manager.provider = "anthropic"
        manager.model = "claude-haiku-4-5-20251001"
        manager.client = MagicMock()
        manager.client.messages.create.return_value = SimpleNamespace(
            content=[], usage=SimpleNamespace(input_tokens=1, output_tokens=1)
        )
        manager.call_reasoning_service("analyze", system="x" * 10000)
        system = manager.client.messages.create.call_args.kwargs["system"]
        assert system[0]["cache_control"] == {"type": "ephemeral"}

    def test_openai_call_splits_cached_tokens(self):
        manager = LLMManager()
        manager.provider = "openai"
        manager.model = "gpt-4o-mini"
        manager.client = MagicMock()
        manager.client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="[]"))],
            usage=SimpleNamespace(
                prompt_tokens=1000, completion_tokens=50,
                prompt_tokens_details=SimpleNamespace(cached_tokens=400),
            ),
        )

        text, usage = manager.call_reasoning_service("analyze", system="rules")

        assert text == "[]"
        assert usage.input_tokens == 600
        assert usage.cache_read_tokens == 400
        messages = manager.client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "rules"}
