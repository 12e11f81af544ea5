"""
Observability module.
Contains logging, metrics, tracing, and the periodic metrics collector.
"""

from jobqueue.observability.logging import bind_context, setup_logging
from jobqueue.observability.metrics import (
    Metrics,
    get_metrics,
    setup_metrics,
)
from jobqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "setup_metrics",
    "get_metrics",
    "Metrics",
    "setup_tracing",
    "get_tracer",
]
