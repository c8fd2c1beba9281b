"""
Exception hierarchy for the job queue.

Only StoreError escapes the public queue operations. Handler errors are
contained by the dispatcher and recorded on the job row.
"""


class JobQueueError(Exception):
    """Base exception for the job queue."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoreError(JobQueueError):
    """Raised when the underlying job store is unreachable or a statement fails."""


class NoHandlerError(JobQueueError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"no handler for job type: {job_type}")


class JobHandlerError(JobQueueError):
    """Base class for errors raised by job handlers to signal an outcome."""


class RetryableJobError(JobHandlerError):
    """Transient handler failure; the job is rescheduled while attempts remain."""


class FatalJobError(JobHandlerError):
    """Permanent handler failure; the job fails immediately without retry."""
