"""
Local Nushell Executor.

Runs validated scripts with a ``nu`` binary on the host. There is no
sandbox here: use it for development with trusted input only.

Security: the script is passed as a single argv element to
create_subprocess_exec, never through a shell.
"""

from __future__ import annotations

import asyncio
import os

from nuagent.errors import ProcessError
from nuagent.execution.base import (
    DEFAULT_TIMEOUT_MS,
    ExecutionRequest,
    ExecutionResult,
    SessionExecutor,
    elapsed_ms,
    parse_structured_output,
)
from nuagent.scripting.validator import ValidationResult

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0
# Grace period for pipe readers after the child has been killed
READER_DRAIN_SECONDS = 1.0
CHUNK_SIZE = 64 * 1024


async def _drain(stream: asyncio.StreamReader | None, chunks: list[bytes]) -> None:
    """Collect a stream chunk by chunk until EOF."""
    if stream is None:
        return
    while True:
        data = await stream.read(CHUNK_SIZE)
        if not data:
            break
        chunks.append(data)


class LocalProcessExecutor(SessionExecutor):
    """Executor that spawns ``nu -c <script>`` per call."""

    name = "local"

    def __init__(
        self,
        nu_path: str = "nu",
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        working_directory: str | None = None,
    ):
        super().__init__(default_timeout_ms=default_timeout_ms)
        self.nu_path = nu_path
        self.working_directory = working_directory or os.getcwd()
        self._logger.info(
            "Local Nushell executor initialized",
            nu_path=nu_path,
            cwd=self.working_directory,
        )
        self._logger.warning(
            "Local executor runs scripts directly on this machine without a sandbox"
        )

    async def _execute_validated(
        self,
        request: ExecutionRequest,
        *,
        validation: ValidationResult,
        session_id: str,
        timeout_ms: int,
        start: float,
    ) -> ExecutionResult:
        script = validation.sanitized_script or ""
        try:
            exit_code, stdout, stderr = await self._run(script, request.env, timeout_ms)
        except ProcessError as e:
            self._logger.warning(
                "Local execution failed",
                session_id=session_id,
                error=str(e),
                timed_out=e.timed_out,
            )
            return ExecutionResult(
                success=False,
                output=e.output,
                error=str(e),
                error_type="ProcessError",
                duration_ms=elapsed_ms(start),
                session_id=session_id,
                validation=validation,
            )

        success = exit_code == 0
        return ExecutionResult(
            success=success,
            output=stdout,
            structured_data=parse_structured_output(stdout),
            error=None if success else (stderr or f"Exit code {exit_code}"),
            error_type=None if success else "ProcessError",
            duration_ms=elapsed_ms(start),
            session_id=session_id,
            validation=validation,
        )

    async def _run(
        self,
        script: str,
        extra_env: dict[str, str] | None,
        timeout_ms: int,
    ) -> tuple[int, str, str]:
        """Run the interpreter and return (exit code, stdout, stderr).

        Raises:
            ProcessError: If the interpreter cannot be spawned or the timeout expires.
        """
        env = {**os.environ, **(extra_env or {})}

        try:
            process = await asyncio.create_subprocess_exec(
                self.nu_path,
                "-c",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_directory,
                env=env,
            )
        except OSError as e:
            raise ProcessError(
                f"Failed to execute nu: {e}. Is Nushell installed?"
            ) from e
        except ValueError as e:
            # Arguments and env values cannot carry NUL bytes
            raise ProcessError(f"Failed to execute nu: {e}") from e

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_chunks)),
            asyncio.create_task(_drain(process.stderr, stderr_chunks)),
        ]

        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            await self._finish_readers(readers)
            raise ProcessError(
                f"Execution timed out after {timeout_ms}ms",
                exit_code=process.returncode,
                timed_out=True,
                output=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
            ) from None

        await self._finish_readers(readers)
        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        return process.returncode or 0, stdout, stderr

    @staticmethod
    async def _finish_readers(readers: list[asyncio.Task]) -> None:
        """Wait briefly for pipe readers, cancelling any that are still blocked."""
        _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def health_check(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.nu_path,
                "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self._logger.warning("Nushell binary not available", nu_path=self.nu_path, error=str(e))
            return False

        try:
            exit_code = await asyncio.wait_for(
                process.wait(), timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return False
        return exit_code == 0

    async def terminate_session(self, session_id: str) -> None:
        # Each execution is a fresh process; nothing to release
        return None
