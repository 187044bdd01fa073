"""Tests for the LLM client (OpenAI SDK mocked)."""

from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from learnrun.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    build_client,
    strip_reasoning,
)


def completion(content: str | None):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "test-model"
    response.usage = None
    return response


@pytest.fixture
def openai_mock():
    with patch("learnrun.llm.client.OpenAI") as mock_cls:
        yield mock_cls.return_value


def test_strip_reasoning():
    assert strip_reasoning("<think>a\nb</think> CPU load is 42%.") == "CPU load is 42%."
    assert strip_reasoning("<ANALYSIS>x</ANALYSIS>ok") == "ok"


class TestGenerate:

    def test_returns_text(self, openai_mock):
        openai_mock.chat.completions.create.return_value = completion("CPU load is 42%.")
        client = LLMClient(config=LLMConfig(model="m"))

        response = client.generate("prompt", system_prompt="system")

        assert response.text == "CPU load is 42%."
        kwargs = openai_mock.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}
        assert kwargs["model"] == "m"

    def test_empty_text_is_response_error(self, openai_mock):
        openai_mock.chat.completions.create.return_value = completion("<think>only thoughts</think>")
        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMResponseError):
            client.generate("prompt")

    def test_no_choices(self, openai_mock):
        empty = completion("x")
        empty.choices = []
        openai_mock.chat.completions.create.return_value = empty
        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMResponseError):
            client.generate("prompt")

    def test_connection_error(self, openai_mock):
        openai_mock.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        )
        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMConnectionError, match="Could not reach lmstudio"):
            client.generate("prompt")

    def test_is_available(self, openai_mock):
        openai_mock.models.list.side_effect = openai.APIConnectionError(
            request=httpx.Request("GET", "http://localhost:1234/v1/models")
        )
        assert LLMClient(config=LLMConfig()).is_available() is False


class TestConfig:

    def test_overrides(self, openai_mock):
        client = LLMClient(config=LLMConfig(), provider="openai", model="gpt", timeout=7)
        assert client.config.base_url == "https://api.openai.com/v1"
        assert client.config.model == "gpt"
        assert client.config.timeout == 7

    def test_from_yaml_missing_file(self, tmp_path):
        assert LLMConfig.from_yaml(tmp_path / "none.yaml") == LLMConfig()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "models.yaml"
        path.write_text("llm:\n  provider: lmstudio\n  model: qwen\n  max_tokens: 64\n", encoding="utf-8")

        config = LLMConfig.from_yaml(path)
        assert config.model == "qwen"
        assert config.max_tokens == 64
        assert config.api_key == "lm-studio"


class TestBuildClient:

    def test_default_provider(self, openai_mock):
        client = build_client()
        assert client.config.provider == "lmstudio"
        assert client.config.base_url == "http://localhost:1234/v1"
        assert client.config.model == "llama-3.2-3b-instruct"

    def test_openai_uses_env_key(self, openai_mock, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        client = build_client(provider="openai", model="gpt-4o", timeout=5)

        assert client.config.base_url == "https://api.openai.com/v1"
        assert client.config.api_key == "sk-test"
        assert client.config.model == "gpt-4o"
        assert client.config.timeout == 5

    def test_unknown_provider(self):
        with pytest.raises(LLMError, match="Unknown provider"):
            build_client(provider="nope")
