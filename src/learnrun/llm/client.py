"""LLM client for LM Studio / Cloud providers.

Provides the text-generation provider used to answer questions in autopilot
mode and to enrich teacher feedback. Compatible with the LM Studio local
server and cloud providers through the OpenAI API.

Supported providers:
- lmstudio: Local LM Studio server (OpenAI-compatible API)
- openai: OpenAI API
- anthropic: Anthropic API (via OpenAI-compatible endpoint)

Failure modes are distinct:
- LLMConnectionError: provider offline, unreachable or timed out
- LLMResponseError: provider answered with unusable output
"""

from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import openai
import structlog
import yaml
from openai import OpenAI

from learnrun.config.app_config import load_app_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["lmstudio", "openai", "anthropic"]

DEFAULT_CONFIG_PATH = Path("configs/models.yaml")

# Provider-specific defaults
PROVIDER_DEFAULTS: dict[Provider, dict[str, Any]] = {
    "lmstudio": {
        "base_url": "http://localhost:1234/v1",
        "api_key": "lm-studio",  # LM Studio doesn't need real API key
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    },
    "anthropic": {
        "base_url": "https://api.anthropic.com/v1",
        "api_key_env": "ANTHROPIC_API_KEY",
    },
}

# Some models emit <think>...</think> blocks before the answer
SANITIZE_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<analysis>.*?</analysis>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]


def strip_reasoning(text: str) -> str:
    """Remove thinking/reasoning tags from model output."""
    result = text
    for pattern in SANITIZE_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: Provider = "lmstudio"
    base_url: str = "http://localhost:1234/v1"
    model: str = "default"
    temperature: float = 0.1
    max_tokens: int = 500
    timeout: int = 60
    api_key: str | None = None

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> LLMConfig:
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if not config_path.exists():
            logger.warning("config_not_found", path=str(config_path))
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        llm_config = data.get("llm", {})

        provider = llm_config.get("provider", "lmstudio")
        defaults = PROVIDER_DEFAULTS.get(provider, {})

        # Get API key from environment if needed
        api_key = None
        if "api_key_env" in defaults:
            api_key = os.environ.get(defaults["api_key_env"])
        elif "api_key" in defaults:
            api_key = defaults["api_key"]

        return cls(
            provider=provider,
            base_url=llm_config.get("base_url", defaults.get("base_url", "")),
            model=llm_config.get("model", "default"),
            temperature=llm_config.get("temperature", 0.1),
            max_tokens=llm_config.get("max_tokens", 500),
            timeout=llm_config.get("timeout", 60),
            api_key=api_key,
        )


@dataclass
class Message:
    """A chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for API call."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: Provider
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def text(self) -> str:
        """Content with reasoning tags removed."""
        return strip_reasoning(self.content)


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """Provider offline, unreachable or timed out."""

    pass


class LLMResponseError(LLMError):
    """Error in LLM response."""

    pass


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Unified client for LLM interactions.

    Supports LM Studio, OpenAI, and Anthropic via OpenAI-compatible API.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider: Provider | None = None,
        model: str | None = None,
        timeout: int | None = None,
    ):
        """Initialize LLM client.

        Args:
            config: LLM configuration (loads from YAML if not provided)
            provider: Override provider from config
            model: Override model from config
            timeout: Override request timeout in seconds
        """
        if config is None:
            config = LLMConfig.from_yaml()

        self.config = config

        # Allow overrides
        if provider is not None:
            self.config.provider = provider
            defaults = PROVIDER_DEFAULTS.get(provider, {})
            if "base_url" in defaults:
                self.config.base_url = defaults["base_url"]
            if "api_key_env" in defaults:
                self.config.api_key = os.environ.get(defaults["api_key_env"])
            elif "api_key" in defaults:
                self.config.api_key = defaults["api_key"]

        if model is not None:
            self.config.model = model
        if timeout is not None:
            self.config.timeout = timeout

        self._client = OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
            max_retries=0,
        )

        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send chat completion request.

        Args:
            messages: List of messages in conversation
            temperature: Override default temperature
            max_tokens: Override default max tokens

        Returns:
            LLMResponse with content and metadata

        Raises:
            LLMConnectionError: If the server is unreachable or times out
            LLMResponseError: If response is invalid
        """
        if temperature is None:
            temperature = self.config.temperature
        if max_tokens is None:
            max_tokens = self.config.max_tokens

        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        start_time = time.time()

        try:
            response = self._client.chat.completions.create(**request_kwargs)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise LLMConnectionError(
                f"Could not reach {self.config.provider} at {self.config.base_url}: {e}"
            ) from e
        except openai.OpenAIError as e:
            raise LLMError(f"LLM call failed: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Empty response from LLM")

        content = response.choices[0].message.content or ""

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_response",
            provider=self.config.provider,
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
        )

    def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Single-turn generation: prompt (plus optional system prompt) to text.

        Raises:
            LLMConnectionError: Provider offline/unreachable
            LLMResponseError: Provider returned no usable text
        """
        messages = []
        if system_prompt:
            messages.append(Message(role="system", content=system_prompt))
        messages.append(Message(role="user", content=prompt))

        response = self.chat(messages, temperature=temperature, max_tokens=max_tokens)
        if not response.text:
            raise LLMResponseError("LLM returned an empty answer")
        return response

    def is_available(self) -> bool:
        """Check if LLM server is available.

        Returns:
            True if server responds, False otherwise
        """
        try:
            self._client.models.list()
            return True
        except openai.OpenAIError:
            return False


def build_client(
    provider: str | None = None,
    model: str | None = None,
    timeout: int | None = None,
) -> LLMClient:
    """Create a client for a provider named in the application config.

    Args:
        provider: Provider name (defaults to ``run.default_provider``)
        model: Override the provider's default model
        timeout: Request timeout in seconds

    Raises:
        LLMError: If the provider is not configured
    """
    app_config = load_app_config()
    name = provider or app_config.run.default_provider
    provider_config = app_config.providers.get(name)
    if provider_config is None:
        raise LLMError(f"Unknown provider: {name}")

    defaults = PROVIDER_DEFAULTS.get(name, {})  # type: ignore[call-overload]
    config = LLMConfig(
        provider=name,  # type: ignore[arg-type]
        base_url=provider_config.base_url or defaults.get("base_url", ""),
        model=model or provider_config.default_model,
        api_key=provider_config.get_api_key() or defaults.get("api_key"),
    )
    return LLMClient(config=config, timeout=timeout)
