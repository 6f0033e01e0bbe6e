"""
Model provider contract.

The agent loop needs exactly one thing from a language model: send a list
of role/content messages, get back the reply text, token usage and optional
reasoning text. ChatProvider captures that; LangChainChatProvider adapts
any LangChain chat model to it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from nuagent.errors import ModelError

logger = structlog.get_logger(__name__)


@dataclass
class ChatMessage:
    """A provider-neutral chat message."""

    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class ChatUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ChatResult:
    """A single model reply."""

    content: str
    usage: ChatUsage
    reasoning: str | None = None


class ChatProvider(ABC):
    """A single request/response chat model."""

    name: str = "provider"

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        reasoning: bool = False,
        reasoning_effort: str | None = None,
    ) -> ChatResult:
        """
        Send messages and return the reply.

        Raises:
            ModelError: If the provider call fails
        """


_MESSAGE_TYPES: dict[str, type[BaseMessage]] = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    """Convert chat messages to LangChain message objects."""
    converted = []
    for message in messages:
        message_type = _MESSAGE_TYPES.get(message.role)
        if message_type is None:
            raise ValueError(f"Unsupported message role: {message.role}")
        converted.append(message_type(content=message.content))
    return converted


def _split_content(content: Any) -> tuple[str, str | None]:
    """Split a LangChain reply into (text, reasoning).

    Anthropic replies with extended thinking arrive as a list of content
    blocks; plain replies are a string.
    """
    if isinstance(content, str):
        return content, None

    text_parts: list[str] = []
    thinking_parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            text_parts.append(block)
        elif isinstance(block, dict):
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text", ""))
            elif block_type in ("thinking", "reasoning"):
                thinking_parts.append(block.get("thinking") or block.get("reasoning") or "")

    reasoning = "\n".join(p for p in thinking_parts if p) or None
    return "".join(text_parts), reasoning


class LangChainChatProvider(ChatProvider):
    """ChatProvider backed by a LangChain BaseChatModel."""

    def __init__(self, llm: BaseChatModel, provider_name: str = "langchain"):
        self.llm = llm
        self.name = provider_name
        self._logger = logger.bind(provider=provider_name)

    def _model_for_call(self, reasoning: bool, reasoning_effort: str | None) -> Any:
        # Only OpenAI-compatible chat models accept a reasoning_effort parameter
        if reasoning and reasoning_effort and self.name == "openai":
            return self.llm.bind(reasoning_effort=reasoning_effort)
        return self.llm

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        reasoning: bool = False,
        reasoning_effort: str | None = None,
    ) -> ChatResult:
        model = self._model_for_call(reasoning, reasoning_effort)
        try:
            response = await model.ainvoke(to_langchain_messages(messages))
        except Exception as e:
            self._logger.error("Model call failed", error=str(e), error_type=type(e).__name__)
            raise ModelError(f"Model call failed: {e}", provider=self.name) from e

        text, thinking = _split_content(response.content)
        if thinking is None:
            extra = getattr(response, "additional_kwargs", None) or {}
            thinking = extra.get("reasoning_content") or None

        usage_metadata = getattr(response, "usage_metadata", None) or {}
        usage = ChatUsage(
            prompt_tokens=int(usage_metadata.get("input_tokens", 0) or 0),
            completion_tokens=int(usage_metadata.get("output_tokens", 0) or 0),
        )

        self._logger.debug(
            "Model call complete",
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            has_reasoning=thinking is not None,
        )
        return ChatResult(content=text, usage=usage, reasoning=thinking)
