"""
Type definitions for the job queue.
Contains handler context, execution outcomes and dispatch statistics.
"""

from jobqueue.types.job import (
    DispatchStats,
    Fatal,
    JobContext,
    Outcome,
    Retryable,
    Success,
)

__all__ = [
    "JobContext",
    "Outcome",
    "Success",
    "Retryable",
    "Fatal",
    "DispatchStats",
]
