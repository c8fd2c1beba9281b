"""
Logging, metrics and tracing for the dispatcher and reaper processes.
"""

from jobqueue.observability.logging import bind_context, job_log_context, setup_logging
from jobqueue.observability.metrics import MetricsCollector, get_metrics, start_metrics_server
from jobqueue.observability.tracing import get_tracer, instrument_engine, setup_tracing

__all__ = [
    "MetricsCollector",
    "bind_context",
    "get_metrics",
    "get_tracer",
    "instrument_engine",
    "job_log_context",
    "setup_logging",
    "setup_tracing",
    "start_metrics_server",
]
