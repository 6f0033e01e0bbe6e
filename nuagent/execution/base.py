"""
Script execution contract shared by every backend.

Every backend validates the script before doing anything else. A rejected
script produces a failed ExecutionResult immediately; the backend-specific
``_execute_validated`` is never reached, so no network or process I/O
happens for invalid input.
"""

from __future__ import annotations

import json
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from nuagent.scripting.validator import ValidationResult, try_validate_script

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_OUTPUT_BYTES = 1_000_000
TRUNCATION_MARKER = "\n... [output truncated]"

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class ExecutionRequest:
    """A script to run plus its execution parameters."""

    script: str
    session_id: str | None = None
    timeout_ms: int | None = None
    env: dict[str, str] | None = None


@dataclass
class ExecutionResult:
    """Outcome of a single execution attempt."""

    success: bool
    output: str
    session_id: str
    validation: ValidationResult
    duration_ms: int = 0
    structured_data: Any | None = None
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "success": self.success,
            "output": self.output,
            "structured_data": self.structured_data,
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
            "session_id": self.session_id,
            "validation": self.validation.to_dict(),
        }


def generate_session_id(prefix: str = "nu") -> str:
    """Generate a unique session id such as ``nu-1718000000000-k3j9x0a1b``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - start) * 1000)


def parse_structured_output(output: str) -> Any | None:
    """Parse JSON output into Python data; None when it is not JSON."""
    if not output or not output.strip():
        return None
    try:
        return json.loads(output)
    except (json.JSONDecodeError, ValueError):
        return None


def truncate_output(output: str, max_bytes: int) -> str:
    """Cap output at ``max_bytes`` of UTF-8, appending a truncation marker."""
    encoded = output.encode("utf-8")
    if len(encoded) <= max_bytes:
        return output
    head = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return head + TRUNCATION_MARKER


class SessionExecutor(ABC):
    """Abstract base for script execution backends."""

    name: str = "base"

    def __init__(self, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.default_timeout_ms = default_timeout_ms
        self._logger = logger.bind(executor=self.name)

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Validate and run a script. Never raises for script or backend failures."""
        start = time.monotonic()
        session_id = request.session_id or generate_session_id()
        validation = try_validate_script(request.script)

        if not validation.valid:
            self._logger.warning(
                "Script rejected by validator",
                session_id=session_id,
                errors=validation.errors,
                safety_level=validation.safety_level.value,
            )
            return ExecutionResult(
                success=False,
                output="",
                error=f"Script validation failed: {', '.join(validation.errors)}",
                error_type="ScriptValidationError",
                duration_ms=elapsed_ms(start),
                session_id=session_id,
                validation=validation,
            )

        timeout_ms = request.timeout_ms or self.default_timeout_ms
        return await self._execute_validated(
            request,
            validation=validation,
            session_id=session_id,
            timeout_ms=timeout_ms,
            start=start,
        )

    @abstractmethod
    async def _execute_validated(
        self,
        request: ExecutionRequest,
        *,
        validation: ValidationResult,
        session_id: str,
        timeout_ms: int,
        start: float,
    ) -> ExecutionResult:
        """Run a script that has already passed validation."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check whether the backend can currently run scripts."""

    @abstractmethod
    async def terminate_session(self, session_id: str) -> None:
        """Release backend resources held for a session."""
