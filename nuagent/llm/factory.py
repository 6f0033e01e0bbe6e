from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

from nuagent.errors import ConfigurationError


class LLMFactory:
    """Factory for creating LLM providers."""

    @staticmethod
    def create_llm(config: dict[str, Any]) -> BaseChatModel:
        """Create an LLM instance based on configuration.

        Args:
            config: Configuration dictionary containing 'provider' and other options.

        Returns:
            BaseChatModel instance.

        Raises:
            ConfigurationError: If the provider is unknown.
        """
        provider = config.get("provider", "").lower()

        if provider == "anthropic":
            return ChatAnthropic(
                api_key=config.get("api_key"),
                model_name=config.get("model_name", "claude-sonnet-4-20250514"),
                temperature=config.get("temperature", 0.7),
                max_tokens=config.get("max_tokens", 4096),
            )
        elif provider in ("openai", "lm_studio"):
            kwargs = {
                "api_key": config.get("api_key"),
                "model_name": config.get("model_name", "gpt-4o-mini"),
                "temperature": config.get("temperature", 0.7),
                "max_tokens": config.get("max_tokens", 4096),
            }
            # LM Studio and other OpenAI-compatible servers
            if config.get("base_url"):
                kwargs["base_url"] = config.get("base_url")
            return ChatOpenAI(**kwargs)
        else:
            raise ConfigurationError(f"Unknown LLM provider: {provider}")
