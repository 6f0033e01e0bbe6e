"""LLM module - provider contract and multi-provider factory.

Usage:
    from nuagent.llm import get_provider

    provider = get_provider()  # Based on LLM_PROVIDER and related env vars
    result = await provider.chat([ChatMessage(role="user", content="hi")])
"""

from __future__ import annotations

import os
from typing import Any

import structlog

from nuagent.llm.factory import LLMFactory
from nuagent.llm.provider import (
    ChatMessage,
    ChatProvider,
    ChatResult,
    ChatUsage,
    LangChainChatProvider,
    to_langchain_messages,
)

logger = structlog.get_logger(__name__)

__all__ = [
    "ChatMessage",
    "ChatProvider",
    "ChatResult",
    "ChatUsage",
    "LLMFactory",
    "LangChainChatProvider",
    "get_llm_config",
    "get_provider",
    "to_langchain_messages",
]


def _float_env(key: str, default: float) -> float:
    try:
        return float(os.getenv(key) or default)
    except ValueError:
        logger.warning("Invalid float in environment, using default", key=key, default=default)
        return default


def _int_env(key: str, default: int) -> int:
    try:
        return int(os.getenv(key) or default)
    except ValueError:
        logger.warning("Invalid integer in environment, using default", key=key, default=default)
        return default


def get_llm_config() -> dict[str, Any]:
    """Get LLM configuration from environment variables.

    Reads LLM_PROVIDER and related environment variables to build
    a configuration dictionary.

    Returns:
        Configuration dictionary for LLMFactory.create_llm()
    """
    provider = (os.getenv("LLM_PROVIDER") or "anthropic").lower()

    config: dict[str, Any] = {
        "provider": provider,
        "temperature": _float_env("LLM_TEMPERATURE", 0.7),
        "max_tokens": _int_env("LLM_MAX_TOKENS", 4096),
    }

    if provider == "anthropic":
        config["api_key"] = os.getenv("ANTHROPIC_API_KEY")
        config["model_name"] = os.getenv("ANTHROPIC_MODEL") or "claude-sonnet-4-20250514"

    elif provider == "openai":
        config["api_key"] = os.getenv("OPENAI_API_KEY")
        config["model_name"] = os.getenv("OPENAI_MODEL") or "gpt-4o-mini"
        base_url = os.getenv("OPENAI_BASE_URL")
        if base_url:
            config["base_url"] = base_url

    elif provider == "lm_studio":
        # OpenAI-compatible local server; the key is not checked
        config["api_key"] = os.getenv("LM_STUDIO_API_KEY") or "lm-studio"
        config["model_name"] = os.getenv("LM_STUDIO_MODEL") or "local-model"
        config["base_url"] = os.getenv("LM_STUDIO_BASE_URL") or "http://localhost:1234/v1"

    logger.debug("LLM config resolved", provider=provider, model=config.get("model_name"))
    return config


def get_provider(config: dict[str, Any] | None = None) -> LangChainChatProvider:
    """Create a chat provider from configuration (environment by default)."""
    config = config or get_llm_config()
    llm = LLMFactory.create_llm(config)
    return LangChainChatProvider(llm, provider_name=config.get("provider", "langchain"))
