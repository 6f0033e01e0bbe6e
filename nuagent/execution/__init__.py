"""
Script execution backends.

Three interchangeable backends share the SessionExecutor contract:

- remote: sandboxed session pool over HTTP (production)
- local:  ``nu`` subprocess on this host (development, unsandboxed)
- mock:   validation only, nothing is run

The backend is chosen once, at construction time, by create_executor().
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import structlog

from nuagent.errors import ConfigurationError
from nuagent.execution.base import (
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TIMEOUT_MS,
    ExecutionRequest,
    ExecutionResult,
    SessionExecutor,
    generate_session_id,
    parse_structured_output,
    truncate_output,
)
from nuagent.execution.local import LocalProcessExecutor
from nuagent.execution.mock import MockExecutor
from nuagent.execution.remote import RemoteSessionExecutor

if TYPE_CHECKING:
    import httpx

    from nuagent.config import ExecutorConfig

logger = structlog.get_logger(__name__)


class ExecutorType(str, Enum):
    """Available execution backends."""

    MOCK = "mock"
    LOCAL = "local"
    REMOTE = "remote"

    @classmethod
    def parse(cls, value: str) -> ExecutorType:
        """Parse a configured backend name; ``session`` is an alias of ``remote``."""
        normalized = value.strip().lower()
        if normalized == "session":
            return cls.REMOTE
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Unknown executor type '{value}' (expected one of: {valid}, session)"
            ) from None


def create_executor(
    config: ExecutorConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SessionExecutor:
    """
    Create the executor selected by configuration.

    Args:
        config: Executor configuration
        transport: Optional httpx transport for the remote backend

    Returns:
        Concrete SessionExecutor

    Raises:
        ConfigurationError: If the remote backend has no endpoint configured
    """
    executor_type = config.executor_type
    logger.info("Creating executor", executor_type=executor_type.value)

    if executor_type == ExecutorType.REMOTE:
        if not config.session_pool_endpoint:
            raise ConfigurationError(
                "Remote executor requires NUSHELL_SESSION_POOL_ENDPOINT"
            )
        return RemoteSessionExecutor(
            session_pool_endpoint=config.session_pool_endpoint,
            default_timeout_ms=config.timeout_ms,
            max_output_bytes=config.max_output_bytes,
            transport=transport,
        )

    if executor_type == ExecutorType.LOCAL:
        return LocalProcessExecutor(
            nu_path=config.nu_path,
            default_timeout_ms=config.timeout_ms,
            working_directory=config.working_directory,
        )

    return MockExecutor(default_timeout_ms=config.timeout_ms)


__all__ = [
    "DEFAULT_MAX_OUTPUT_BYTES",
    "DEFAULT_TIMEOUT_MS",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorType",
    "LocalProcessExecutor",
    "MockExecutor",
    "RemoteSessionExecutor",
    "SessionExecutor",
    "create_executor",
    "generate_session_id",
    "parse_structured_output",
    "truncate_output",
]
