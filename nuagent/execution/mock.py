"""Mock executor for development and tests. Validates, never runs anything."""

from __future__ import annotations

from nuagent.execution.base import (
    DEFAULT_TIMEOUT_MS,
    ExecutionRequest,
    ExecutionResult,
    SessionExecutor,
    elapsed_ms,
)
from nuagent.scripting.validator import ValidationResult

MOCK_OUTPUT_PREFIX = "[Mock Executor] Would execute:\n"


class MockExecutor(SessionExecutor):
    name = "mock"

    def __init__(self, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        super().__init__(default_timeout_ms=default_timeout_ms)
        self._logger.info("Mock executor initialized")

    async def _execute_validated(
        self,
        request: ExecutionRequest,
        *,
        validation: ValidationResult,
        session_id: str,
        timeout_ms: int,
        start: float,
    ) -> ExecutionResult:
        self._logger.debug("Mock execution", session_id=session_id)
        return ExecutionResult(
            success=True,
            output=f"{MOCK_OUTPUT_PREFIX}{request.script}",
            duration_ms=elapsed_ms(start),
            session_id=session_id,
            validation=validation,
        )

    async def health_check(self) -> bool:
        return True

    async def terminate_session(self, session_id: str) -> None:
        return None
