"""Tests for the model provider adapter and LLM factory."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from nuagent.errors import ConfigurationError, ModelError
from nuagent.llm import (
    ChatMessage,
    LangChainChatProvider,
    LLMFactory,
    get_llm_config,
    to_langchain_messages,
)


def fake_llm(response=None, error=None):
    llm = MagicMock()
    if error is not None:
        llm.ainvoke = AsyncMock(side_effect=error)
    else:
        llm.ainvoke = AsyncMock(return_value=response)
    return llm


class TestLangChainChatProvider:
    @pytest.mark.asyncio
    async def test_text_reply_and_usage(self):
        llm = fake_llm(
            AIMessage(
                content="hello",
                usage_metadata={"input_tokens": 12, "output_tokens": 3, "total_tokens": 15},
            )
        )
        provider = LangChainChatProvider(llm, provider_name="anthropic")

        result = await provider.chat(
            [ChatMessage("system", "be brief"), ChatMessage("user", "hi")]
        )

        assert result.content == "hello"
        assert result.usage.prompt_tokens == 12
        assert result.usage.completion_tokens == 3
        assert result.usage.total_tokens == 15
        assert result.reasoning is None

        sent = llm.ainvoke.await_args.args[0]
        assert isinstance(sent[0], SystemMessage)
        assert isinstance(sent[1], HumanMessage)

    @pytest.mark.asyncio
    async def test_missing_usage_counts_as_zero(self):
        provider = LangChainChatProvider(fake_llm(AIMessage(content="ok")))

        result = await provider.chat([ChatMessage("user", "hi")])

        assert result.usage.prompt_tokens == 0
        assert result.usage.completion_tokens == 0

    @pytest.mark.asyncio
    async def test_thinking_blocks_become_reasoning(self):
        content = [
            {"type": "thinking", "thinking": "list the directory first"},
            {"type": "text", "text": "```nushell\nls\n```"},
        ]
        provider = LangChainChatProvider(fake_llm(AIMessage(content=content)))

        result = await provider.chat([ChatMessage("user", "what's here?")])

        assert result.content == "```nushell\nls\n```"
        assert result.reasoning == "list the directory first"

    @pytest.mark.asyncio
    async def test_reasoning_content_kwarg(self):
        message = AIMessage(content="42", additional_kwargs={"reasoning_content": "6 * 7"})
        provider = LangChainChatProvider(fake_llm(message))

        result = await provider.chat([ChatMessage("user", "answer?")])

        assert result.reasoning == "6 * 7"

    @pytest.mark.asyncio
    async def test_failure_is_model_error(self):
        provider = LangChainChatProvider(
            fake_llm(error=RuntimeError("rate limited")), provider_name="openai"
        )

        with pytest.raises(ModelError) as exc_info:
            await provider.chat([ChatMessage("user", "hi")])

        assert exc_info.value.provider == "openai"
        assert "rate limited" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_reasoning_effort_bound_for_openai(self):
        bound = fake_llm(AIMessage(content="ok"))
        llm = fake_llm(AIMessage(content="unused"))
        llm.bind = MagicMock(return_value=bound)
        provider = LangChainChatProvider(llm, provider_name="openai")

        await provider.chat([ChatMessage("user", "hi")], reasoning=True, reasoning_effort="high")

        llm.bind.assert_called_once_with(reasoning_effort="high")
        bound.ainvoke.assert_awaited_once()
        llm.ainvoke.assert_not_awaited()


def test_to_langchain_messages_rejects_unknown_role():
    with pytest.raises(ValueError, match="Unsupported message role"):
        to_langchain_messages([ChatMessage("tool", "x")])


def test_to_langchain_messages_assistant():
    converted = to_langchain_messages([ChatMessage("assistant", "done")])

    assert isinstance(converted[0], AIMessage)
    assert converted[0].content == "done"


class TestFactory:
    def test_creates_anthropic(self):
        llm = LLMFactory.create_llm(
            {"provider": "anthropic", "api_key": "test_key", "model_name": "claude-sonnet-4-20250514"}
        )

        assert isinstance(llm, ChatAnthropic)

    def test_creates_openai_compatible(self):
        llm = LLMFactory.create_llm(
            {
                "provider": "lm_studio",
                "api_key": "lm-studio",
                "model_name": "local-model",
                "base_url": "http://localhost:1234/v1",
            }
        )

        assert isinstance(llm, ChatOpenAI)

    def test_invalid_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown LLM provider: invalid"):
            LLMFactory.create_llm({"provider": "invalid"})


class TestLLMConfig:
    def test_anthropic_default(self, monkeypatch):
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.delenv("ANTHROPIC_MODEL", raising=False)

        config = get_llm_config()

        assert config["provider"] == "anthropic"
        assert config["api_key"] == "sk-test"
        assert config["model_name"] == "claude-sonnet-4-20250514"

    def test_lm_studio(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "LM_STUDIO")
        monkeypatch.delenv("LM_STUDIO_BASE_URL", raising=False)

        config = get_llm_config()

        assert config["provider"] == "lm_studio"
        assert config["base_url"] == "http://localhost:1234/v1"

    def test_invalid_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("LLM_TEMPERATURE", "warm")
        monkeypatch.setenv("LLM_MAX_TOKENS", "lots")

        config = get_llm_config()

        assert config["temperature"] == 0.7
        assert config["max_tokens"] == 4096
