"""Agent loop metrics.

In-process counters for turns, model calls and script executions. A
``MetricsCollector`` is owned by whoever builds the orchestrator and passed
in explicitly; there is no module-level collector.

Usage:
    from nuagent.observability.metrics import MetricsCollector

    metrics = MetricsCollector()
    orchestrator = Orchestrator(..., metrics=metrics)

    metrics.get_stats()
    metrics.to_prometheus()
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_HISTORY = 1000


@dataclass
class ExecutionSample:
    """One script execution as seen by the agent loop."""

    executor: str
    success: bool
    duration_ms: int
    validation_rejected: bool = False
    error_type: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class TurnSample:
    """One completed ``process_message`` call."""

    conversation_id: str
    iterations: int
    executions: int
    prompt_tokens: int
    completion_tokens: int
    duration_ms: int
    iteration_limit_reached: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class _Counters:
    turns: int = 0
    model_calls: int = 0
    model_errors: int = 0
    iteration_limit_hits: int = 0
    executions: int = 0
    execution_failures: int = 0
    validation_rejections: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_execution_ms: int = 0
    total_turn_ms: int = 0


class MetricsCollector:
    """Bounded in-memory metrics for one orchestrator instance."""

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY):
        self._lock = threading.Lock()
        self._counters = _Counters()
        self._executions: deque[ExecutionSample] = deque(maxlen=max_history)
        self._turns: deque[TurnSample] = deque(maxlen=max_history)
        self._errors_by_type: dict[str, int] = {}

    def record_model_call(self, prompt_tokens: int, completion_tokens: int) -> None:
        with self._lock:
            self._counters.model_calls += 1
            self._counters.prompt_tokens += prompt_tokens
            self._counters.completion_tokens += completion_tokens

    def record_model_error(self) -> None:
        with self._lock:
            self._counters.model_errors += 1

    def record_execution(self, sample: ExecutionSample) -> None:
        with self._lock:
            self._executions.append(sample)
            self._counters.executions += 1
            self._counters.total_execution_ms += sample.duration_ms
            if sample.validation_rejected:
                self._counters.validation_rejections += 1
            if not sample.success:
                self._counters.execution_failures += 1
                if sample.error_type:
                    self._errors_by_type[sample.error_type] = (
                        self._errors_by_type.get(sample.error_type, 0) + 1
                    )

    def record_turn(self, sample: TurnSample) -> None:
        with self._lock:
            self._turns.append(sample)
            self._counters.turns += 1
            self._counters.total_turn_ms += sample.duration_ms
            if sample.iteration_limit_reached:
                self._counters.iteration_limit_hits += 1

        if sample.iteration_limit_reached:
            logger.warning(
                "Turn hit iteration limit",
                conversation_id=sample.conversation_id,
                iterations=sample.iterations,
            )

    def get_stats(self) -> dict[str, Any]:
        """Aggregate counters as a plain dictionary."""
        with self._lock:
            c = self._counters
            avg_execution_ms = c.total_execution_ms / c.executions if c.executions else 0.0
            avg_turn_ms = c.total_turn_ms / c.turns if c.turns else 0.0
            success_rate = (
                (c.executions - c.execution_failures) / c.executions if c.executions else 0.0
            )
            return {
                "turns": c.turns,
                "model_calls": c.model_calls,
                "model_errors": c.model_errors,
                "iteration_limit_hits": c.iteration_limit_hits,
                "executions": c.executions,
                "execution_failures": c.execution_failures,
                "validation_rejections": c.validation_rejections,
                "execution_success_rate": round(success_rate, 4),
                "avg_execution_ms": round(avg_execution_ms, 2),
                "avg_turn_ms": round(avg_turn_ms, 2),
                "prompt_tokens": c.prompt_tokens,
                "completion_tokens": c.completion_tokens,
                "total_tokens": c.prompt_tokens + c.completion_tokens,
                "errors_by_type": dict(self._errors_by_type),
            }

    def get_recent_executions(self, limit: int = 50) -> list[ExecutionSample]:
        with self._lock:
            return list(self._executions)[-limit:]

    def get_recent_turns(self, limit: int = 50) -> list[TurnSample]:
        with self._lock:
            return list(self._turns)[-limit:]

    def to_prometheus(self, prefix: str = "nuagent") -> str:
        """Render counters in the Prometheus text exposition format."""
        stats = self.get_stats()
        counters = (
            ("turns_total", "Agent turns processed", stats["turns"]),
            ("model_calls_total", "Model provider calls", stats["model_calls"]),
            ("model_errors_total", "Failed model provider calls", stats["model_errors"]),
            (
                "iteration_limit_hits_total",
                "Turns that exhausted the iteration cap",
                stats["iteration_limit_hits"],
            ),
            ("executions_total", "Script executions", stats["executions"]),
            ("execution_failures_total", "Failed script executions", stats["execution_failures"]),
            (
                "validation_rejections_total",
                "Scripts rejected by the validator",
                stats["validation_rejections"],
            ),
            ("prompt_tokens_total", "Prompt tokens consumed", stats["prompt_tokens"]),
            ("completion_tokens_total", "Completion tokens produced", stats["completion_tokens"]),
        )

        lines: list[str] = []
        for name, help_text, value in counters:
            metric = f"{prefix}_{name}"
            lines.append(f"# HELP {metric} {help_text}")
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")

        metric = f"{prefix}_execution_errors_total"
        lines.append(f"# HELP {metric} Failed executions by error type")
        lines.append(f"# TYPE {metric} counter")
        for error_type, count in sorted(stats["errors_by_type"].items()):
            lines.append(f'{metric}{{error_type="{error_type}"}} {count}')

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters = _Counters()
            self._executions.clear()
            self._turns.clear()
            self._errors_by_type.clear()
