# =============================================================================
# Unit Tests — LLM Completion Backends
# =============================================================================
#
# SDK clients are replaced with mocks; no API calls are made.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from earnings_qa.services import llm as llm_module
from earnings_qa.services.llm import (
    AnthropicProvider,
    OpenAICompatibleProvider,
    get_llm_provider,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class TestOpenAICompatibleProvider:

    def _provider(self, reply):
        provider = OpenAICompatibleProvider(api_key="sk-test", model="gpt-4o-mini")
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(return_value=reply)
        return provider

    def test_system_then_user_message(self):
        provider = self._provider(SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Thought 1: revenue"))],
            model="gpt-4o-mini",
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4),
        ))

        completion = _run(provider.complete(
            "You are an analyst.", "What were net sales?", stage="generate", temperature=0.0,
        ))

        sent = provider._client.chat.completions.create.await_args.kwargs
        assert sent["messages"] == [
            {"role": "system", "content": "You are an analyst."},
            {"role": "user", "content": "What were net sales?"},
        ]
        assert sent["temperature"] == 0.0
        assert completion.text == "Thought 1: revenue"
        assert completion.input_tokens == 12

    def test_defaults_come_from_settings(self):
        provider = self._provider(SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))],
            model=None,
            usage=None,
        ))

        with patch.object(llm_module.settings, "llm_temperature", 0.7), \
                patch.object(llm_module.settings, "llm_max_tokens", 512):
            completion = _run(provider.complete("sys", "q"))

        sent = provider._client.chat.completions.create.await_args.kwargs
        assert sent["temperature"] == 0.7
        assert sent["max_tokens"] == 512
        assert completion.text == ""
        assert completion.model == "gpt-4o-mini"
        assert completion.output_tokens == 0


class TestAnthropicProvider:

    def test_system_is_top_level_and_text_blocks_joined(self):
        provider = AnthropicProvider(api_key="sk-test", model="claude-sonnet-4-6")
        provider._client = MagicMock()
        provider._client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Direct answer: "),
                SimpleNamespace(type="text", text="yes"),
            ],
            model="claude-sonnet-4-6",
            usage=SimpleNamespace(input_tokens=20, output_tokens=6),
        ))

        completion = _run(provider.complete("You are an analyst.", "q", stage="synthesize"))

        sent = provider._client.messages.create.await_args.kwargs
        assert sent["system"] == "You are an analyst."
        assert sent["messages"] == [{"role": "user", "content": "q"}]
        assert completion.text == "Direct answer: yes"
        assert completion.output_tokens == 6


class TestGetLLMProvider:

    def setup_method(self):
        llm_module._provider = None

    def teardown_method(self):
        llm_module._provider = None

    def test_unknown_provider_name(self):
        with patch.object(llm_module.settings, "llm_provider", "mistral"):
            with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
                get_llm_provider()

    def test_missing_key(self):
        with patch.object(llm_module.settings, "llm_provider", "anthropic"), \
                patch.object(llm_module.settings, "llm_api_key", None), \
                patch.object(llm_module.settings, "anthropic_api_key", None):
            with pytest.raises(ValueError, match="No LLM API key"):
                get_llm_provider()

    def test_singleton(self):
        with patch.object(llm_module.settings, "llm_provider", "openai_compatible"), \
                patch.object(llm_module.settings, "llm_api_key", "sk-test"):
            first = get_llm_provider()
            assert get_llm_provider() is first
            assert isinstance(first, OpenAICompatibleProvider)
