"""
Prometheus metrics collection.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from jobqueue.constants import (
    METRIC_DISPATCH_ERRORS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_RESOLVED,
    METRIC_LEASE_CLAIMED,
    METRIC_LEASE_RECLAIMED,
    METRIC_QUEUE_DEPTH,
)

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth per status
    - Job enqueues and resolutions
    - Job execution duration
    - Lease claims and reclaims
    - Dispatcher store errors
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs per status",
            ["status"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_type"],
            registry=self._registry,
        )

        # status is one of succeeded, retried, failed
        self.jobs_resolved = Counter(
            METRIC_JOBS_RESOLVED,
            "Total number of job executions resolved",
            ["job_type", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_claimed = Counter(
            METRIC_LEASE_CLAIMED,
            "Total number of leases claimed",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_reclaimed = Counter(
            METRIC_LEASE_RECLAIMED,
            "Total number of stale leases reclaimed by the reaper",
            registry=self._registry,
        )

        self.dispatch_errors = Counter(
            METRIC_DISPATCH_ERRORS,
            "Total number of dispatch ticks aborted by store errors",
            ["worker_id"],
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.labels(job_type=job_type).inc()

    def record_job_resolved(
        self,
        job_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one execution."""
        self.jobs_resolved.labels(job_type=job_type, status=status).inc()
        self.job_duration.labels(job_type=job_type, status=status).observe(
            duration_seconds
        )

    def record_lease_claimed(self, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.lease_claimed.labels(worker_id=worker_id).inc(count)

    def record_leases_reclaimed(self, count: int) -> None:
        """Record leases returned to the queue by the reaper."""
        self.lease_reclaimed.inc(count)

    def record_dispatch_error(self, worker_id: str) -> None:
        """Record a dispatch tick that failed on the store."""
        self.dispatch_errors.labels(worker_id=worker_id).inc()

    def update_queue_depth(self, status: str, depth: int) -> None:
        """Update the job count for a status."""
        self.queue_depth.labels(status=status).set(depth)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int) -> None:
    """Expose metrics over HTTP for Prometheus to scrape."""
    setup_metrics()
    start_http_server(port)
    logger.info(f"Metrics server listening on port {port}")
