"""
Retry scheduler: resolves a claimed job after its handler ran.

Success completes the job. Failure either reschedules it with exponential
backoff plus jitter or, when the error is fatal or attempts are exhausted,
fails it for good.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config import Settings, get_settings
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    Exponential backoff with bounded jitter.

    delay(n) = min(max_delay, base_delay * 2 ** n), plus a uniform jitter of
    up to jitter_ratio * delay(n).
    """

    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter_ratio: float = 0.1
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must not be negative")
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0 and 1")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        """Build a policy from application settings."""
        settings = settings or get_settings()
        return cls(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter_ratio=settings.retry_jitter_ratio,
        )

    def base_backoff(self, attempt_count: int) -> float:
        """Backoff in seconds before jitter for the given attempt count."""
        # Cap the exponent so large attempt counts do not overflow the float.
        exponent = min(attempt_count, 62)
        return min(self.max_delay, self.base_delay * (2**exponent))

    def compute_delay(self, attempt_count: int) -> timedelta:
        """
        Compute the full retry delay for the given attempt count.

        Args:
            attempt_count: Attempts made so far, including the one that just failed.

        Returns:
            Delay until the job becomes eligible again.
        """
        delay = self.base_backoff(attempt_count)
        jitter = self.rng.uniform(0.0, delay * self.jitter_ratio)
        return timedelta(seconds=delay + jitter)

    def next_run_at(self, attempt_count: int, now: datetime) -> datetime:
        """Get the next eligibility time for a job that just failed."""
        return now + self.compute_delay(attempt_count)


class RetryScheduler:
    """
    Applies the outcome of a job execution to the job row.

    Both methods return the updated job, or None when the caller's lease was
    lost (the reaper reclaimed the row); in that case nothing is written.
    """

    def __init__(self, store: JobStore, policy: RetryPolicy | None = None):
        """
        Initialize the scheduler.

        Args:
            store: The job store.
            policy: Backoff policy. Defaults to one built from settings.
        """
        self._store = store
        self.policy = policy or RetryPolicy.from_settings(store.settings)

    async def on_success(
        self,
        job: Job,
        result: Any = None,
        *,
        session: AsyncSession | None = None,
    ) -> Job | None:
        """
        Mark a claimed job as completed.

        Args:
            job: The job as returned by the claim.
            result: JSON-serializable handler result to store.
            session: Optional session to join.

        Returns:
            The completed job, or None if the lease was lost.
        """
        async with self._store.transaction(session) as active:
            completed = await JobRepository(active).mark_completed(
                job, now=self._store.clock(), result=result
            )

        if completed is not None:
            logger.info(
                "Job completed successfully",
                extra={"job_id": str(job.id), "job_type": job.job_type},
            )
        return completed

    async def on_failure(
        self,
        job: Job,
        error: str,
        retryable: bool = True,
        *,
        session: AsyncSession | None = None,
    ) -> Job | None:
        """
        Record a failed attempt.

        The attempt count is incremented. A fatal error, or reaching
        max_attempts, fails the job; otherwise it goes back to PENDING with
        a backoff delay.

        Args:
            job: The job as returned by the claim.
            error: Failure reason stored on the row.
            retryable: False for errors that must never be retried.
            session: Optional session to join.

        Returns:
            The updated job, or None if the lease was lost.
        """
        attempts = job.attempt_count + 1
        now = self._store.clock()

        async with self._store.transaction(session) as active:
            repo = JobRepository(active)
            if not retryable or attempts >= job.max_attempts:
                updated = await repo.mark_failed(job, error=error, now=now)
                if updated is not None:
                    logger.warning(
                        f"Job failed after {attempts} attempts",
                        extra={
                            "job_id": str(job.id),
                            "job_type": job.job_type,
                            "retryable": retryable,
                            "error": error,
                        },
                    )
                return updated

            run_at = self.policy.next_run_at(attempts, now)
            updated = await repo.reschedule(job, error=error, run_at=run_at, now=now)

        if updated is not None:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job.id),
                    "job_type": job.job_type,
                    "attempt_count": attempts,
                    "scheduled_at": run_at.isoformat(),
                },
            )
        return updated
