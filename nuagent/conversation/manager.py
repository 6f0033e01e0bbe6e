"""
Conversation Manager.

In-memory conversation store. Messages are append-only; history is trimmed
for model context by scanning backward from the newest message until the
token budget is exhausted.

There is no locking: callers must not run two turns for the same
conversation concurrently.
"""

from __future__ import annotations

import math
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from nuagent.errors import ConversationNotFoundError
from nuagent.llm.provider import ChatMessage

logger = structlog.get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: four characters per token."""
    return math.ceil(len(text) / 4)


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_conversation_id() -> str:
    return f"conv-{int(time.time() * 1000)}-{_random_suffix(8)}"


def generate_message_id() -> str:
    return f"msg-{int(time.time() * 1000)}-{_random_suffix(6)}"


@dataclass
class ExecutionRecord:
    """Script execution attached to a synthetic result message."""

    script: str
    output: str
    success: bool
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "script": self.script,
            "output": self.output,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ConversationMessage:
    """A single message in a conversation."""

    id: str
    role: MessageRole
    content: str
    timestamp: float = field(default_factory=time.time)
    tokens: int | None = None
    execution: ExecutionRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "tokens": self.tokens,
            "execution": self.execution.to_dict() if self.execution else None,
        }


@dataclass
class Conversation:
    """Conversation state and history."""

    id: str
    messages: list[ConversationMessage] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    total_tokens: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "total_tokens": self.total_tokens,
            "metadata": self.metadata,
        }


class ConversationManager:
    """In-memory store of conversations keyed by id."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}

    def create(self, metadata: dict[str, Any] | None = None) -> Conversation:
        conversation = Conversation(id=generate_conversation_id(), metadata=metadata or {})
        self._conversations[conversation.id] = conversation
        logger.debug("Created conversation", conversation_id=conversation.id)
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def require(self, conversation_id: str) -> Conversation:
        """Get a conversation or raise ConversationNotFoundError."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def add_message(
        self,
        conversation_id: str,
        role: MessageRole | str,
        content: str,
        tokens: int | None = None,
        execution: ExecutionRecord | None = None,
    ) -> ConversationMessage:
        """
        Append a message to a conversation.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        conversation = self.require(conversation_id)
        message = ConversationMessage(
            id=generate_message_id(),
            role=MessageRole(role),
            content=content,
            tokens=tokens,
            execution=execution,
        )
        conversation.messages.append(message)
        conversation.updated_at = message.timestamp
        if tokens:
            conversation.total_tokens += tokens
        return message

    def get_messages_for_context(self, conversation_id: str, max_tokens: int) -> list[ChatMessage]:
        """
        Most recent messages that fit in ``max_tokens``, oldest first.

        Scanning stops at the first message (from the newest) that would
        overflow the budget; older messages are never skipped over.
        """
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return []

        selected: list[ChatMessage] = []
        used = 0
        for message in reversed(conversation.messages):
            cost = message.tokens or estimate_tokens(message.content)
            if used + cost > max_tokens:
                break
            selected.append(ChatMessage(role=message.role.value, content=message.content))
            used += cost

        selected.reverse()
        return selected

    def delete(self, conversation_id: str) -> bool:
        deleted = self._conversations.pop(conversation_id, None) is not None
        if deleted:
            logger.debug("Deleted conversation", conversation_id=conversation_id)
        return deleted

    def list(self) -> list[Conversation]:
        return list(self._conversations.values())

    def __len__(self) -> int:
        return len(self._conversations)
