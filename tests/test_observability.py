"""Tests for metrics, tracing helpers and logging setup."""

import logging

import structlog

from nuagent.observability import configure_logging, get_tracer, truncate
from nuagent.observability.metrics import ExecutionSample, MetricsCollector, TurnSample


def test_truncate():
    """Verify truncation logic."""
    assert truncate("hello", 10) == "hello"
    assert truncate("hello world", 5) == "he..."
    assert truncate(123, 10) == "123"


def test_get_tracer_without_provider():
    tracer = get_tracer("tests")

    with tracer.start_as_current_span("noop") as span:
        span.set_attribute("key", "value")


def test_configure_logging_is_idempotent():
    configure_logging(level="DEBUG")
    handlers = len(logging.getLogger().handlers)

    configure_logging(level="WARNING")

    assert len(logging.getLogger().handlers) == handlers
    assert logging.getLogger().level == logging.WARNING
    structlog.get_logger("tests").warning("logging configured")


class TestMetricsCollector:
    def test_empty_stats(self):
        stats = MetricsCollector().get_stats()

        assert stats["turns"] == 0
        assert stats["execution_success_rate"] == 0.0
        assert stats["errors_by_type"] == {}

    def test_execution_counters(self):
        metrics = MetricsCollector()
        metrics.record_execution(ExecutionSample(executor="mock", success=True, duration_ms=10))
        metrics.record_execution(
            ExecutionSample(
                executor="mock",
                success=False,
                duration_ms=30,
                validation_rejected=True,
                error_type="ScriptValidationError",
            )
        )

        stats = metrics.get_stats()

        assert stats["executions"] == 2
        assert stats["execution_failures"] == 1
        assert stats["validation_rejections"] == 1
        assert stats["execution_success_rate"] == 0.5
        assert stats["avg_execution_ms"] == 20.0
        assert stats["errors_by_type"] == {"ScriptValidationError": 1}

    def test_turn_and_model_counters(self):
        metrics = MetricsCollector()
        metrics.record_model_call(100, 20)
        metrics.record_model_call(50, 10)
        metrics.record_model_error()
        metrics.record_turn(
            TurnSample(
                conversation_id="conv-1",
                iterations=5,
                executions=5,
                prompt_tokens=150,
                completion_tokens=30,
                duration_ms=400,
                iteration_limit_reached=True,
            )
        )

        stats = metrics.get_stats()

        assert stats["model_calls"] == 2
        assert stats["model_errors"] == 1
        assert stats["total_tokens"] == 180
        assert stats["turns"] == 1
        assert stats["iteration_limit_hits"] == 1
        assert metrics.get_recent_turns()[0].conversation_id == "conv-1"

    def test_history_is_bounded(self):
        metrics = MetricsCollector(max_history=3)
        for i in range(5):
            metrics.record_execution(ExecutionSample(executor="mock", success=True, duration_ms=i))

        recent = metrics.get_recent_executions()

        assert [s.duration_ms for s in recent] == [2, 3, 4]
        assert metrics.get_stats()["executions"] == 5

    def test_prometheus_format(self):
        metrics = MetricsCollector()
        metrics.record_execution(
            ExecutionSample(executor="remote", success=False, duration_ms=5, error_type="TransportError")
        )

        text = metrics.to_prometheus()

        assert "# TYPE nuagent_executions_total counter" in text
        assert "nuagent_executions_total 1" in text
        assert 'nuagent_execution_errors_total{error_type="TransportError"} 1' in text

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_model_call(1, 1)
        metrics.reset()

        assert metrics.get_stats()["model_calls"] == 0
