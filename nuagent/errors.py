"""Exception hierarchy for the agent core.

Validation, transport and process errors are raised inside the executors
and converted into failed ExecutionResults at the ``execute`` boundary.
Model errors and unknown conversations propagate to the caller.
"""

from __future__ import annotations


class NuAgentError(Exception):
    """Base class for all nuagent errors."""


class ConfigurationError(NuAgentError):
    """Invalid or incomplete runtime configuration."""


class ScriptValidationError(NuAgentError):
    """A script was rejected by the validator and never reached a backend."""

    def __init__(
        self,
        message: str,
        errors: list[str],
        safety_level: str = "risky",
    ):
        self.errors = errors
        self.safety_level = safety_level
        super().__init__(message)


class TransportError(NuAgentError):
    """Remote execution backend failed (network, timeout or non-2xx status)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProcessError(NuAgentError):
    """Local interpreter exited non-zero or was killed after a timeout."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        timed_out: bool = False,
        output: str = "",
    ):
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.output = output
        super().__init__(message)


class ModelError(NuAgentError):
    """The language model provider call failed."""

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class ConversationNotFoundError(NuAgentError, KeyError):
    """No conversation exists for the given id."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")

    def __str__(self) -> str:
        return f"Conversation {self.conversation_id} not found"
