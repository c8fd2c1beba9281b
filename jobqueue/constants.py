"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a dispatcher)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> PENDING (retryable failure, attempts remain)
    - PROCESSING -> FAILED (fatal failure or attempts exhausted)
    - PROCESSING -> PENDING (lease timed out - crash recovery)

    COMPLETED and FAILED are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)

# Default values
DEFAULT_MAX_ATTEMPTS = 3
# Floor for the dispatcher's backoff while the store is unavailable
MIN_STORE_BACKOFF_SECONDS = 0.1

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_RESOLVED = "jobs_resolved_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_CLAIMED = "lease_claimed_total"
METRIC_LEASE_RECLAIMED = "lease_reclaimed_total"
METRIC_DISPATCH_ERRORS = "dispatch_errors_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RESOLVE_JOB = "resolve_job"
SPAN_RECLAIM_STALE = "reclaim_stale"
