"""
Remote Session Pool Executor.

Runs validated scripts in a sandboxed session pool service over HTTP. The
pool provides the actual isolation; this client only issues one
timeout-bounded request per execution and normalizes the response.

Endpoints:
    POST   {endpoint}/code/execute   run a script (X-Session-Id header)
    GET    {endpoint}/sessions       health check
    DELETE {endpoint}/sessions/{id}  terminate a session
"""

from __future__ import annotations

import asyncio
import math
from typing import Any

import httpx

from nuagent.errors import TransportError
from nuagent.execution.base import (
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TIMEOUT_MS,
    ExecutionRequest,
    ExecutionResult,
    SessionExecutor,
    elapsed_ms,
    parse_structured_output,
    truncate_output,
)
from nuagent.scripting.validator import ValidationResult

SESSION_HEADER = "X-Session-Id"
CONTROL_TIMEOUT_SECONDS = 5.0


class RemoteSessionExecutor(SessionExecutor):
    """Executor backed by a remote sandboxed session pool."""

    name = "remote"

    def __init__(
        self,
        session_pool_endpoint: str,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the remote executor.

        Args:
            session_pool_endpoint: Base URL of the session pool
            default_timeout_ms: Timeout used when a request does not set one
            max_output_bytes: Output beyond this size is truncated
            transport: Optional httpx transport (used by tests)
        """
        super().__init__(default_timeout_ms=default_timeout_ms)
        self.endpoint = session_pool_endpoint.rstrip("/")
        self.max_output_bytes = max_output_bytes
        self._transport = transport
        self._logger.info("Remote session executor initialized", endpoint=self.endpoint)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _execute_validated(
        self,
        request: ExecutionRequest,
        *,
        validation: ValidationResult,
        session_id: str,
        timeout_ms: int,
        start: float,
    ) -> ExecutionResult:
        try:
            stdout, stderr, execution_result = await asyncio.wait_for(
                self._post_script(validation.sanitized_script or "", session_id, timeout_ms),
                timeout=timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            self._logger.error(
                "Session execution timed out",
                session_id=session_id,
                timeout_ms=timeout_ms,
            )
            return ExecutionResult(
                success=False,
                output="",
                error=f"Execution timed out after {timeout_ms}ms",
                error_type="TransportError",
                duration_ms=elapsed_ms(start),
                session_id=session_id,
                validation=validation,
            )
        except TransportError as e:
            return ExecutionResult(
                success=False,
                output="",
                error=str(e),
                error_type="TransportError",
                duration_ms=elapsed_ms(start),
                session_id=session_id,
                validation=validation,
            )
        except (httpx.HTTPError, ValueError) as e:
            self._logger.error("Session execution error", session_id=session_id, error=str(e))
            return ExecutionResult(
                success=False,
                output="",
                error=str(e) or type(e).__name__,
                error_type="TransportError",
                duration_ms=elapsed_ms(start),
                session_id=session_id,
                validation=validation,
            )

        output = truncate_output(stdout or execution_result, self.max_output_bytes)
        # Any stderr from the sandbox marks the script as failed
        success = not stderr.strip()

        return ExecutionResult(
            success=success,
            output=output,
            structured_data=parse_structured_output(output),
            error=stderr or None,
            duration_ms=elapsed_ms(start),
            session_id=session_id,
            validation=validation,
        )

    async def _post_script(
        self, script: str, session_id: str, timeout_ms: int
    ) -> tuple[str, str, str]:
        """POST the script and return (stdout, stderr, executionResult)."""
        body = {
            "properties": {
                "codeInputType": "inline",
                "executionType": "synchronous",
                "code": script,
                "timeoutInSeconds": math.ceil(timeout_ms / 1000),
            }
        }
        async with self._client(timeout=timeout_ms / 1000) as client:
            response = await client.post(
                f"{self.endpoint}/code/execute",
                json=body,
                headers={SESSION_HEADER: session_id},
            )

        if not response.is_success:
            self._logger.error(
                "Session execution failed",
                session_id=session_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise TransportError(
                f"Execution failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        return _read_properties(response.json())

    async def health_check(self) -> bool:
        try:
            async with self._client(timeout=CONTROL_TIMEOUT_SECONDS) as client:
                response = await client.get(f"{self.endpoint}/sessions")
            return response.is_success
        except httpx.HTTPError as e:
            self._logger.warning("Session pool health check failed", error=str(e))
            return False

    async def terminate_session(self, session_id: str) -> None:
        try:
            async with self._client(timeout=CONTROL_TIMEOUT_SECONDS) as client:
                response = await client.delete(f"{self.endpoint}/sessions/{session_id}")
            if response.is_success:
                self._logger.info("Session terminated", session_id=session_id)
            else:
                self._logger.warning(
                    "Session termination rejected",
                    session_id=session_id,
                    status_code=response.status_code,
                )
        except httpx.HTTPError as e:
            self._logger.warning(
                "Failed to terminate session", session_id=session_id, error=str(e)
            )


def _read_properties(data: Any) -> tuple[str, str, str]:
    """Pull (stdout, stderr, executionResult) out of a pool response body.

    Raises:
        TransportError: If the body does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise TransportError(f"Unexpected response body: {type(data).__name__}")

    properties = data.get("properties") or {}
    if not isinstance(properties, dict):
        raise TransportError(
            f"Unexpected 'properties' in response: {type(properties).__name__}"
        )

    streams = []
    for key in ("stdout", "stderr"):
        value = properties.get(key) or ""
        if not isinstance(value, str):
            raise TransportError(f"Unexpected '{key}' in response: {type(value).__name__}")
        streams.append(value)

    # executionResult may be any JSON value
    execution_result = properties.get("executionResult") or ""
    if not isinstance(execution_result, str):
        execution_result = str(execution_result)

    return streams[0], streams[1], execution_result
