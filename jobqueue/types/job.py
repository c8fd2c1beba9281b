"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains the deserialized payload and job metadata.
    """

    job_id: UUID
    job_type: str
    payload: Any
    attempt: int
    max_attempts: int
    lease_owner: str | None
    started_at: datetime | None

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure of this attempt is terminal."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get retry attempts left after this one."""
        return max(0, self.max_attempts - self.attempt)


@dataclass(frozen=True)
class Success:
    """Handler finished; the result is stored on the job."""

    result: Any = None


@dataclass(frozen=True)
class Retryable:
    """Transient failure; retried while attempts remain."""

    error: str


@dataclass(frozen=True)
class Fatal:
    """Permanent failure; the job fails without further attempts."""

    error: str


Outcome = Success | Retryable | Fatal


class DispatchStats(BaseModel):
    """
    Counts for one dispatch tick.

    none_available counts claim cycles that found no eligible job.
    """

    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    none_available: int = 0

    @property
    def processed(self) -> int:
        """Number of jobs resolved during the tick."""
        return self.succeeded + self.retried + self.failed

