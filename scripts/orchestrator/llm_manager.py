#!/usr/bin/env python3
"""
LLM Provider Management Module
Centralized management for reasoning-service calls made during a scan.

Supports multiple LLM providers:
- Anthropic (Claude)
- OpenAI (GPT)
- Ollama (local, self-hosted, OpenAI-compatible endpoint)

Features:
- Provider auto-detection
- Client initialization with error handling
- Per-model pricing including prompt-cache read/write tokens
- Prompt caching of large system prompts (Anthropic)

Retries are not applied here; callers wrap ``call_reasoning_service`` with
the classified tenacity policy so they control the retry budget.
"""

import logging
from typing import Optional

from exceptions import ConfigurationError
from hybrid.models import TokenUsage

# Configure logging
logger = logging.getLogger(__name__)

# Rough token estimate used for the caching threshold: 1 token ~ 4 characters
CHARS_PER_TOKEN = 4
# Anthropic only caches prompt prefixes above this size for small models
MIN_CACHEABLE_TOKENS = 2048


class LLMManager:
    """Unified LLM provider management

    Handles all interactions with LLM providers including:
    - Provider detection and client initialization
    - Model selection
    - Reasoning-service calls returning ``(text, TokenUsage)``
    - Cost calculation
    """

    # Default models for each provider
    DEFAULT_MODELS = {
        "anthropic": "claude-haiku-4-5-20251001",
        "openai": "gpt-4o-mini",
        "ollama": "llama3.2:3b",
    }

    # USD per 1M tokens, matched by model-name prefix (longest prefix wins)
    PRICING = {
        "claude-haiku-4-5": {"input": 1.0, "output": 5.0, "cache_read": 0.10, "cache_write": 1.25},
        "claude-sonnet-4-5": {"input": 3.0, "output": 15.0, "cache_read": 0.30, "cache_write": 3.75},
        "claude-3-5-haiku": {"input": 0.80, "output": 4.0, "cache_read": 0.08, "cache_write": 1.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.60, "cache_read": 0.075, "cache_write": 0.0},
        "gpt-4o": {"input": 2.50, "output": 10.0, "cache_read": 1.25, "cache_write": 0.0},
    }

    # Fallback pricing when the model is not in PRICING
    PROVIDER_PRICING = {
        "anthropic": {"input": 1.0, "output": 5.0, "cache_read": 0.10, "cache_write": 1.25},
        "openai": {"input": 2.50, "output": 10.0, "cache_read": 1.25, "cache_write": 0.0},
        "ollama": {"input": 0.0, "output": 0.0, "cache_read": 0.0, "cache_write": 0.0},
    }

    def __init__(self, config: dict = None):
        """Initialize LLM Manager

        Args:
            config: Configuration dictionary with API keys and settings
        """
        self.config = config or {}
        self.client = None
        self.provider = None
        self.model = None
        self.max_tokens = int(self.config.get("llm_max_tokens", 4096))
        self.timeout = float(self.config.get("llm_timeout", 120.0))

    def detect_provider(self) -> Optional[str]:
        """Auto-detect which AI provider to use based on available keys

        Returns:
            Provider name or None if no provider is configured
        """
        provider = self.config.get("ai_provider", "auto")

        # Explicit provider selection (overrides auto-detection)
        if provider and provider != "auto":
            return provider

        # Priority: Anthropic > OpenAI > Ollama (local)
        if self.config.get("anthropic_api_key"):
            return "anthropic"
        elif self.config.get("openai_api_key"):
            return "openai"
        elif self.config.get("ollama_endpoint"):
            return "ollama"
        else:
            logger.warning("No AI provider configured")
            logger.info("Set one of: ANTHROPIC_API_KEY, OPENAI_API_KEY, or OLLAMA_ENDPOINT")
            return None

    def initialize(self, provider: str = None) -> bool:
        """Initialize LLM client for the specified provider

        Args:
            provider: Provider name (if None, will auto-detect)

        Returns:
            True if initialization successful, False otherwise
        """
        if provider is None:
            provider = self.detect_provider()

        if provider is None:
            logger.error("No provider detected or specified")
            return False

        try:
            self.client, self.provider = self._get_client(provider)
            self.model = self.get_model_name(provider)
            logger.info("Initialized LLM Manager with %s / %s", self.provider, self.model)
            return True
        except (ConfigurationError, ImportError) as e:
            logger.error("Failed to initialize LLM: %s: %s", type(e).__name__, e)
            return False

    def _get_client(self, provider: str):
        """Get AI client for the specified provider

        Returns:
            Tuple of (client, provider_name)

        Raises:
            ImportError: If required dependencies are not installed
            ConfigurationError: If the API key is not configured
        """
        if provider == "anthropic":
            from anthropic import Anthropic

            api_key = self.config.get("anthropic_api_key")
            if not api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY not set")
            logger.info("Using Anthropic API")
            return Anthropic(api_key=api_key, timeout=self.timeout, max_retries=0), "anthropic"

        elif provider == "openai":
            from openai import OpenAI

            api_key = self.config.get("openai_api_key")
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY not set")
            logger.info("Using OpenAI API")
            return OpenAI(api_key=api_key, timeout=self.timeout, max_retries=0), "openai"

        elif provider == "ollama":
            from openai import OpenAI

            endpoint = self.config.get("ollama_endpoint") or "http://localhost:11434"
            # Sanitize endpoint URL for logging
            safe_endpoint = str(endpoint).split("@")[-1].split("//")[-1].split("/")[0]
            logger.info("Using Ollama endpoint: %s", safe_endpoint)
            return (
                OpenAI(base_url=f"{endpoint}/v1", api_key="ollama", timeout=self.timeout, max_retries=0),
                "ollama",
            )

        safe_provider = str(provider).split("/")[-1] if provider else "unknown"
        logger.error("Unknown AI provider: %s", safe_provider)
        raise ConfigurationError(f"Unknown provider: {safe_provider}")

    def get_model_name(self, provider: str = None) -> str:
        if provider is None:
            provider = self.provider

        model = self.config.get("model", "auto")
        if model and model != "auto":
            return model

        return self.DEFAULT_MODELS.get(provider, self.DEFAULT_MODELS["anthropic"])

    # ------------------------------------------------------------------
    # Cost
    # ------------------------------------------------------------------

    @classmethod
    def pricing_for(cls, model: Optional[str], provider: Optional[str]) -> dict:
        if model:
            matches = [prefix for prefix in cls.PRICING if model.startswith(prefix)]
            if matches:
                return cls.PRICING[max(matches, key=len)]
        return cls.PROVIDER_PRICING.get(provider or "", cls.PROVIDER_PRICING["ollama"])

    @classmethod
    def calculate_cost(
        cls,
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int = 0,
        cache_write_tokens: int = 0,
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> float:
        """Cost in USD of one call's token usage."""
        pricing = cls.pricing_for(model, provider)
        return (
            input_tokens * pricing["input"]
            + output_tokens * pricing["output"]
            + cache_read_tokens * pricing["cache_read"]
            + cache_write_tokens * pricing["cache_write"]
        ) / 1_000_000

    @classmethod
    def estimate_call_cost(cls, prompt_length: int, max_output_tokens: int, model: str, provider: str) -> float:
        """Estimate cost of a call before making it (assumes 70% of max output is used)."""
        return cls.calculate_cost(
            int(prompt_length / CHARS_PER_TOKEN),
            int(max_output_tokens * 0.7),
            model=model,
            provider=provider,
        )

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def call_reasoning_service(self, prompt: str, system: str = "") -> tuple[str, TokenUsage]:
        """Send one prompt and return ``(response_text, usage)``.

        Raises:
            ConfigurationError: If the manager has not been initialized.
            Provider SDK exceptions propagate unchanged for classification.
        """
        if self.client is None or self.provider is None:
            raise ConfigurationError("LLM Manager not initialized. Call initialize() first.")

        if self.provider == "anthropic":
            system_block = {"type": "text", "text": system}
            if len(system) / CHARS_PER_TOKEN >= MIN_CACHEABLE_TOKENS:
                system_block["cache_control"] = {"type": "ephemeral"}
            kwargs = {}
            if system:
                kwargs["system"] = [system_block]
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
            text = "".join(
                getattr(block, "text", "") for block in message.content
            )
            usage = message.usage
            input_tokens = usage.input_tokens or 0
            output_tokens = usage.output_tokens or 0
            cache_read = getattr(usage, "cache_read_input_tokens", 0) or 0
            cache_write = getattr(usage, "cache_creation_input_tokens", 0) or 0

        elif self.provider in ("openai", "ollama"):
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
            )
            text = response.choices[0].message.content or ""
            usage = response.usage
            details = getattr(usage, "prompt_tokens_details", None)
            cache_read = (getattr(details, "cached_tokens", 0) or 0) if details else 0
            # OpenAI bills cached prompt tokens separately from fresh ones
            input_tokens = (usage.prompt_tokens or 0) - cache_read
            output_tokens = usage.completion_tokens or 0
            cache_write = 0

        else:
            raise ConfigurationError(f"Unknown provider: {self.provider}")

        cost = self.calculate_cost(
            input_tokens, output_tokens, cache_read, cache_write, self.model, self.provider
        )
        logger.debug(
            "LLM call: in=%d out=%d cache_read=%d cache_write=%d cost=$%.5f",
            input_tokens, output_tokens, cache_read, cache_write, cost,
        )
        return text, TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cache_read,
            cache_write_tokens=cache_write,
            cost_usd=cost,
        )


__all__ = ["LLMManager"]
