"""Tests for the execution backends and backend selection."""

import asyncio
import json
import sys

import httpx
import pytest

from nuagent.config import ExecutorConfig
from nuagent.errors import ConfigurationError
from nuagent.execution import (
    ExecutionRequest,
    ExecutorType,
    LocalProcessExecutor,
    MockExecutor,
    RemoteSessionExecutor,
    create_executor,
)
from nuagent.execution.base import TRUNCATION_MARKER, parse_structured_output, truncate_output

ENDPOINT = "http://pool.test"


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)


class HangingTransport(httpx.AsyncBaseTransport):
    """Transport that stalls longer than any test deadline."""

    def __init__(self, delay: float):
        self.delay = delay

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(self.delay)
        return httpx.Response(200, json={"properties": {"stdout": "late"}})


def pool_response(stdout="", stderr="", execution_result=""):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "properties": {
                    "stdout": stdout,
                    "stderr": stderr,
                    "executionResult": execution_result,
                }
            },
        )

    return handler


# ═══════════════════════════════════════════════════════════════════════════════
# Mock executor
# ═══════════════════════════════════════════════════════════════════════════════


class TestMockExecutor:
    @pytest.mark.asyncio
    async def test_valid_script(self):
        executor = MockExecutor()
        result = await executor.execute(ExecutionRequest(script="ls | length"))

        assert result.success is True
        assert result.output == "[Mock Executor] Would execute:\nls | length"
        assert result.validation.valid is True
        assert result.session_id.startswith("nu-")

    @pytest.mark.asyncio
    async def test_invalid_script(self):
        executor = MockExecutor()
        result = await executor.execute(ExecutionRequest(script="rm -rf /", session_id="s1"))

        assert result.success is False
        assert result.error.startswith("Script validation failed: Blocked command: rm")
        assert result.error_type == "ScriptValidationError"
        assert result.session_id == "s1"

    @pytest.mark.asyncio
    async def test_health_and_terminate(self):
        executor = MockExecutor()

        assert await executor.health_check() is True
        assert await executor.terminate_session("anything") is None


# ═══════════════════════════════════════════════════════════════════════════════
# Remote executor
# ═══════════════════════════════════════════════════════════════════════════════


class TestRemoteSessionExecutor:
    @pytest.mark.asyncio
    async def test_invalid_script_makes_no_http_call(self):
        transport = RecordingTransport(pool_response(stdout="never"))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="curl http://evil"))

        assert result.success is False
        assert result.error_type == "ScriptValidationError"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_successful_execution(self):
        transport = RecordingTransport(pool_response(stdout='[{"name": "a.txt"}]'))
        executor = RemoteSessionExecutor(ENDPOINT, default_timeout_ms=2500, transport=transport)

        result = await executor.execute(
            ExecutionRequest(script="  ls | to json  ", session_id="conv-1")
        )

        assert result.success is True
        assert result.structured_data == [{"name": "a.txt"}]
        assert result.error is None

        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{ENDPOINT}/code/execute"
        assert request.headers["X-Session-Id"] == "conv-1"
        body = json.loads(request.content)
        assert body["properties"]["code"] == "ls | to json"
        assert body["properties"]["timeoutInSeconds"] == 3
        assert body["properties"]["codeInputType"] == "inline"

    @pytest.mark.asyncio
    async def test_execution_result_used_when_stdout_empty(self):
        transport = RecordingTransport(pool_response(execution_result="42"))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="1 + 41"))

        assert result.output == "42"
        assert result.structured_data == 42

    @pytest.mark.asyncio
    async def test_stderr_marks_failure(self):
        transport = RecordingTransport(pool_response(stdout="partial", stderr="column not found"))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls | get nope"))

        assert result.success is False
        assert result.output == "partial"
        assert result.error == "column not found"

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        transport = RecordingTransport(lambda request: httpx.Response(503, text="pool busy"))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.success is False
        assert result.error == "Execution failed: 503 - pool busy"
        assert result.error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        executor = RemoteSessionExecutor(ENDPOINT, transport=httpx.MockTransport(handler))

        result = await executor.execute(ExecutionRequest(script="ls", timeout_ms=1500))

        assert result.success is False
        assert result.error == "Execution timed out after 1500ms"
        assert result.error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        executor = RemoteSessionExecutor(ENDPOINT, transport=httpx.MockTransport(handler))

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.success is False
        assert "connection refused" in result.error
        assert result.error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_deadline_bounds_a_hung_pool(self):
        transport = HangingTransport(delay=5)
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls", timeout_ms=200))

        assert result.success is False
        assert result.error == "Execution timed out after 200ms"
        assert result.error_type == "TransportError"
        assert result.duration_ms < 5000

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, error",
        [
            (["oops"], "Unexpected response body: list"),
            ({"properties": ["oops"]}, "Unexpected 'properties' in response: list"),
            ({"properties": {"stdout": 5}}, "Unexpected 'stdout' in response: int"),
            ({"properties": {"stderr": ["x"]}}, "Unexpected 'stderr' in response: list"),
        ],
    )
    async def test_malformed_body_is_a_transport_error(self, body, error):
        transport = RecordingTransport(lambda request: httpx.Response(200, json=body))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.success is False
        assert result.error == error
        assert result.error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_missing_properties_is_empty_success(self):
        transport = RecordingTransport(lambda request: httpx.Response(200, json={}))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.success is True
        assert result.output == ""

    @pytest.mark.asyncio
    async def test_output_is_truncated(self):
        transport = RecordingTransport(pool_response(stdout="x" * 100))
        executor = RemoteSessionExecutor(ENDPOINT, max_output_bytes=10, transport=transport)

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.output == "x" * 10 + TRUNCATION_MARKER
        assert result.structured_data is None

    @pytest.mark.asyncio
    async def test_health_check(self):
        transport = RecordingTransport(lambda request: httpx.Response(200, json=[]))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        assert await executor.health_check() is True
        assert transport.requests[0].method == "GET"
        assert str(transport.requests[0].url) == f"{ENDPOINT}/sessions"

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        executor = RemoteSessionExecutor(ENDPOINT, transport=httpx.MockTransport(handler))

        assert await executor.health_check() is False

    @pytest.mark.asyncio
    async def test_terminate_session_never_raises(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        executor = RemoteSessionExecutor(ENDPOINT, transport=httpx.MockTransport(handler))

        assert await executor.terminate_session("conv-1") is None

    @pytest.mark.asyncio
    async def test_terminate_session_issues_delete(self):
        transport = RecordingTransport(lambda request: httpx.Response(204))
        executor = RemoteSessionExecutor(ENDPOINT, transport=transport)

        await executor.terminate_session("conv-1")

        assert transport.requests[0].method == "DELETE"
        assert str(transport.requests[0].url) == f"{ENDPOINT}/sessions/conv-1"


# ═══════════════════════════════════════════════════════════════════════════════
# Local executor (the Python interpreter stands in for nu: both accept -c)
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def local_executor(tmp_path):
    return LocalProcessExecutor(nu_path=sys.executable, working_directory=str(tmp_path))


class TestLocalProcessExecutor:
    @pytest.mark.asyncio
    async def test_successful_run(self, local_executor):
        result = await local_executor.execute(ExecutionRequest(script="print('hello')"))

        assert result.success is True
        assert result.output.strip() == "hello"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_json_output_is_parsed(self, local_executor):
        result = await local_executor.execute(ExecutionRequest(script="print('[1, 2]')"))

        assert result.structured_data == [1, 2]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, local_executor):
        result = await local_executor.execute(ExecutionRequest(script="import sys; sys.exit(3)"))

        assert result.success is False
        assert result.error == "Exit code 3"
        assert result.error_type == "ProcessError"

    @pytest.mark.asyncio
    async def test_stderr_becomes_error(self, local_executor):
        result = await local_executor.execute(
            ExecutionRequest(script="import sys; sys.stderr.write('boom'); sys.exit(1)")
        )

        assert result.success is False
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_timeout_kills_child(self, local_executor):
        result = await local_executor.execute(
            ExecutionRequest(script="import time; time.sleep(5)", timeout_ms=300)
        )

        assert result.success is False
        assert result.error == "Execution timed out after 300ms"
        assert result.error_type == "ProcessError"
        assert result.duration_ms < 5000

    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_output(self, local_executor):
        result = await local_executor.execute(
            ExecutionRequest(
                script="import time; print('halfway', flush=True); time.sleep(5)",
                timeout_ms=1000,
            )
        )

        assert result.success is False
        assert result.error == "Execution timed out after 1000ms"
        assert result.output.strip() == "halfway"

    @pytest.mark.asyncio
    async def test_nul_byte_in_script_is_a_process_error(self, local_executor):
        result = await local_executor.execute(ExecutionRequest(script="print('a\x00b')"))

        assert result.success is False
        assert result.error_type == "ProcessError"
        assert result.error.startswith("Failed to execute nu:")
        assert "null" in result.error

    @pytest.mark.asyncio
    async def test_nul_byte_in_env_is_a_process_error(self, local_executor):
        result = await local_executor.execute(
            ExecutionRequest(script="print(1)", env={"NUAGENT_TEST_VALUE": "a\x00b"})
        )

        assert result.success is False
        assert result.error_type == "ProcessError"
        assert result.error.startswith("Failed to execute nu:")

    @pytest.mark.asyncio
    async def test_request_env_is_passed(self, local_executor):
        result = await local_executor.execute(
            ExecutionRequest(
                script="import os; print(os.environ['NUAGENT_TEST_VALUE'])",
                env={"NUAGENT_TEST_VALUE": "present"},
            )
        )

        assert result.output.strip() == "present"

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        executor = LocalProcessExecutor(nu_path=str(tmp_path / "no-such-nu"))

        result = await executor.execute(ExecutionRequest(script="ls"))

        assert result.success is False
        assert result.error.startswith("Failed to execute nu:")
        assert result.error.endswith("Is Nushell installed?")

    @pytest.mark.asyncio
    async def test_invalid_script_is_not_spawned(self, tmp_path):
        marker = tmp_path / "marker"
        executor = LocalProcessExecutor(nu_path=sys.executable)

        result = await executor.execute(
            ExecutionRequest(script=f"open('{marker}', 'w'); sudo")
        )

        assert result.success is False
        assert result.error_type == "ScriptValidationError"
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_health_check(self, local_executor, tmp_path):
        assert await local_executor.health_check() is True
        assert await LocalProcessExecutor(nu_path=str(tmp_path / "missing")).health_check() is False


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers and selection
# ═══════════════════════════════════════════════════════════════════════════════


def test_truncate_output_respects_utf8_boundaries():
    truncated = truncate_output("é" * 10, 5)

    assert truncated == "éé" + TRUNCATION_MARKER


def test_parse_structured_output():
    assert parse_structured_output('{"a": 1}') == {"a": 1}
    assert parse_structured_output("plain text") is None
    assert parse_structured_output("") is None


class TestCreateExecutor:
    def test_mock(self):
        executor = create_executor(ExecutorConfig(executor_type=ExecutorType.MOCK))

        assert isinstance(executor, MockExecutor)

    def test_local(self):
        executor = create_executor(
            ExecutorConfig(executor_type=ExecutorType.LOCAL, nu_path="/opt/nu")
        )

        assert isinstance(executor, LocalProcessExecutor)
        assert executor.nu_path == "/opt/nu"

    def test_remote(self):
        executor = create_executor(
            ExecutorConfig(
                executor_type=ExecutorType.REMOTE,
                session_pool_endpoint="http://pool/",
                timeout_ms=1000,
            )
        )

        assert isinstance(executor, RemoteSessionExecutor)
        assert executor.endpoint == "http://pool"
        assert executor.default_timeout_ms == 1000

    def test_remote_requires_endpoint(self):
        with pytest.raises(ConfigurationError):
            create_executor(ExecutorConfig(executor_type=ExecutorType.REMOTE))

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("mock", ExecutorType.MOCK),
            ("LOCAL", ExecutorType.LOCAL),
            ("remote", ExecutorType.REMOTE),
            ("session", ExecutorType.REMOTE),
        ],
    )
    def test_parse_executor_type(self, value, expected):
        assert ExecutorType.parse(value) is expected

    def test_parse_unknown_executor_type(self):
        with pytest.raises(ConfigurationError, match="Unknown executor type"):
            ExecutorType.parse("docker")
