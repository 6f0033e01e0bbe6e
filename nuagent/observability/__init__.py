"""Observability for the agent core: logging setup, tracing and metrics.

Quick Start:
    from nuagent.observability import configure_logging, MetricsCollector

    configure_logging(level="DEBUG")
    metrics = MetricsCollector()
"""

from nuagent.observability.log_config import configure_logging
from nuagent.observability.metrics import (
    ExecutionSample,
    MetricsCollector,
    TurnSample,
)
from nuagent.observability.tracing import get_tracer, truncate

__all__ = [
    "configure_logging",
    "get_tracer",
    "truncate",
    "MetricsCollector",
    "ExecutionSample",
    "TurnSample",
]
