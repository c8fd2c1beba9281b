"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import JobStatus
from jobqueue.db.models import Job

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job insertion
    - Claim of the earliest eligible job with FOR UPDATE SKIP LOCKED
    - Guarded status transitions (complete, reschedule, fail)
    - Reclaiming processing rows whose lease timed out

    The repository never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        job_type: str,
        payload: Any,
        max_attempts: int,
        scheduled_at: datetime,
        now: datetime,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            job_type: Handler lookup key.
            payload: JSON-serializable handler input.
            max_attempts: Attempt ceiling.
            scheduled_at: Earliest time the job may be claimed.
            now: Creation timestamp.

        Returns:
            The persisted Job.
        """
        job = Job(
            job_type=job_type,
            payload=payload,
            status=JobStatus.PENDING,
            attempt_count=0,
            max_attempts=max_attempts,
            scheduled_at=scheduled_at,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": str(job.id), "job_type": job_type},
        )
        return job

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_next(self, worker_id: str, now: datetime) -> Job | None:
        """
        Claim the earliest eligible pending job using FOR UPDATE SKIP LOCKED.

        This is the critical path for job distribution. Selection and the
        transition to PROCESSING happen in one statement, so two dispatchers
        racing for the same row can never both win it: the loser skips the
        locked row and takes the next one.

        Args:
            worker_id: Identity of the claiming dispatcher.
            now: Current time; rows scheduled after it are not eligible.

        Returns:
            The claimed Job or None if nothing is eligible.
        """
        eligible = (
            select(Job.id)
            .where(
                Job.status == JobStatus.PENDING,
                Job.scheduled_at <= now,
            )
            .order_by(Job.scheduled_at, Job.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(
                Job.id.in_(eligible),
                Job.status == JobStatus.PENDING,
            )
            .values(
                status=JobStatus.PROCESSING,
                started_at=now,
                completed_at=None,
                lease_owner=worker_id,
                updated_at=now,
            )
            .returning(Job)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={
                    "job_id": str(job.id),
                    "job_type": job.job_type,
                    "worker_id": worker_id,
                    "attempt_count": job.attempt_count,
                },
            )

        return job

    async def _resolve(self, job: Job, **values: Any) -> Job | None:
        """
        Apply a transition to a job this caller still holds the lease on.

        The guard matches the exact lease that was claimed. If the reaper
        returned the row to the queue (and possibly another dispatcher claimed
        it again) nothing is updated.
        """
        stmt = (
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.PROCESSING,
                Job.lease_owner == job.lease_owner,
                Job.started_at == job.started_at,
                Job.attempt_count == job.attempt_count,
            )
            .values(**values)
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        updated = result.scalar_one_or_none()

        if updated is None:
            logger.warning(
                "Lease no longer held, transition skipped",
                extra={
                    "job_id": str(job.id),
                    "worker_id": job.lease_owner,
                    "target_status": str(values.get("status")),
                },
            )
        return updated

    async def mark_completed(
        self,
        job: Job,
        now: datetime,
        result: Any = None,
    ) -> Job | None:
        """
        Mark job as successfully completed.

        Args:
            job: The claimed job snapshot.
            now: Completion timestamp.
            result: Optional handler result.

        Returns:
            Updated Job or None if the lease was lost.
        """
        return await self._resolve(
            job,
            status=JobStatus.COMPLETED,
            completed_at=now,
            updated_at=now,
            error_message=None,
            lease_owner=None,
            result=result,
        )

    async def reschedule(
        self,
        job: Job,
        error: str,
        run_at: datetime,
        now: datetime,
    ) -> Job | None:
        """
        Return a failed job to the queue for another attempt.

        Args:
            job: The claimed job snapshot.
            error: Failure reason.
            run_at: Next eligibility time.
            now: Current time.

        Returns:
            Updated Job or None if the lease was lost.
        """
        return await self._resolve(
            job,
            status=JobStatus.PENDING,
            attempt_count=job.attempt_count + 1,
            error_message=error,
            scheduled_at=run_at,
            started_at=None,
            lease_owner=None,
            updated_at=now,
        )

    async def mark_failed(
        self,
        job: Job,
        error: str,
        now: datetime,
    ) -> Job | None:
        """
        Move a job to the terminal FAILED state.

        Args:
            job: The claimed job snapshot.
            error: Failure reason.
            now: Failure timestamp.

        Returns:
            Updated Job or None if the lease was lost.
        """
        return await self._resolve(
            job,
            status=JobStatus.FAILED,
            attempt_count=min(job.attempt_count + 1, job.max_attempts),
            error_message=error,
            completed_at=now,
            lease_owner=None,
            updated_at=now,
        )

    async def reclaim_stale(self, cutoff: datetime, now: datetime) -> Sequence[UUID]:
        """
        Return processing jobs claimed before the cutoff to the queue.

        This is called by the reaper to handle worker crashes. Rows are
        selected with the same SKIP LOCKED discipline as claims, so a row
        that is being resolved concurrently is left alone.

        Args:
            cutoff: Jobs started before this instant are considered abandoned.
            now: Current time, used as the new scheduled_at.

        Returns:
            IDs of the reclaimed jobs.
        """
        stale = (
            select(Job.id)
            .where(
                Job.status == JobStatus.PROCESSING,
                Job.started_at < cutoff,
            )
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(
                Job.id.in_(stale),
                Job.status == JobStatus.PROCESSING,
            )
            .values(
                status=JobStatus.PENDING,
                scheduled_at=now,
                started_at=None,
                lease_owner=None,
                updated_at=now,
            )
            .returning(Job.id)
        )

        result = await self._session.execute(stmt)
        job_ids = result.scalars().all()

        if job_ids:
            logger.info(
                f"Reclaimed {len(job_ids)} jobs with expired leases",
                extra={"job_ids": [str(job_id) for job_id in job_ids]},
            )

        return job_ids

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by status.

        Returns:
            Dictionary of status -> count, including zero counts.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)

        stats = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            stats[JobStatus(status).value] = count
        return stats
