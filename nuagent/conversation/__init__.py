"""Conversation state and the agent loop."""

from nuagent.conversation.manager import (
    Conversation,
    ConversationManager,
    ConversationMessage,
    ExecutionRecord,
    MessageRole,
    estimate_tokens,
)
from nuagent.conversation.orchestrator import (
    DirectExecutionResult,
    Orchestrator,
    TokenUsage,
    TurnResult,
    build_system_prompt,
    format_execution_result,
)

__all__ = [
    "Conversation",
    "ConversationManager",
    "ConversationMessage",
    "DirectExecutionResult",
    "ExecutionRecord",
    "MessageRole",
    "Orchestrator",
    "TokenUsage",
    "TurnResult",
    "build_system_prompt",
    "estimate_tokens",
    "format_execution_result",
]
