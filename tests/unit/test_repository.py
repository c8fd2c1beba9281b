"""
Unit tests for the job repository.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import JobStatus
from jobqueue.db.repository import JobRepository

NOW = datetime(2026, 1, 1, 12, 0, 0)


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def _create(self, repo: JobRepository, db_session: AsyncSession, **kwargs):
        values = {
            "job_type": "echo",
            "payload": {"message": "test"},
            "max_attempts": 3,
            "scheduled_at": NOW,
            "now": NOW,
        }
        values.update(kwargs)
        job = await repo.create_job(**values)
        await db_session.commit()
        return job

    async def test_create_job_success(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test successful job creation."""
        job = await self._create(repo, db_session)

        assert job.id is not None
        assert job.job_type == "echo"
        assert job.payload == {"message": "test"}
        assert job.status == JobStatus.PENDING
        assert job.attempt_count == 0
        assert job.max_attempts == 3
        assert job.started_at is None
        assert job.completed_at is None
        assert job.created_at == NOW

    async def test_get_job_by_id(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test getting a job by ID."""
        job = await self._create(repo, db_session)

        retrieved = await repo.get_job(job.id)

        assert retrieved is not None
        assert retrieved.id == job.id

    async def test_get_job_not_found(self, repo: JobRepository):
        """Test getting a non-existent job."""
        assert await repo.get_job(uuid4()) is None

    async def test_claim_next_success(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test claiming a pending job."""
        job = await self._create(repo, db_session)

        claimed = await repo.claim_next(worker_id="test-worker", now=NOW)
        await db_session.commit()

        assert claimed is not None
        assert claimed.id == job.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.lease_owner == "test-worker"
        assert claimed.started_at == NOW
        assert claimed.completed_at is None
        assert claimed.attempt_count == 0

    async def test_claim_next_is_exclusive(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that a claimed job is not handed out again."""
        await self._create(repo, db_session)

        first = await repo.claim_next(worker_id="worker-1", now=NOW)
        await db_session.commit()
        second = await repo.claim_next(worker_id="worker-2", now=NOW)
        await db_session.commit()

        assert first is not None
        assert second is None

    async def test_claim_next_skips_future_jobs(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that jobs scheduled in the future are not eligible."""
        await self._create(repo, db_session, scheduled_at=NOW + timedelta(seconds=60))

        assert await repo.claim_next(worker_id="worker", now=NOW) is None
        assert await repo.claim_next(worker_id="worker", now=NOW + timedelta(seconds=60)) is not None

    async def test_claim_order_by_scheduled_at(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that the earliest scheduled job is claimed first."""
        later = await self._create(repo, db_session, scheduled_at=NOW - timedelta(seconds=10))
        earliest = await self._create(repo, db_session, scheduled_at=NOW - timedelta(seconds=30))
        middle = await self._create(repo, db_session, scheduled_at=NOW - timedelta(seconds=20))

        claimed_ids = []
        for _ in range(3):
            job = await repo.claim_next(worker_id="worker", now=NOW)
            await db_session.commit()
            claimed_ids.append(job.id)

        assert claimed_ids == [earliest.id, middle.id, later.id]

    async def test_mark_completed(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test successful job completion."""
        await self._create(repo, db_session)
        claimed = await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        completed = await repo.mark_completed(claimed, now=NOW, result={"output": "success"})
        await db_session.commit()

        assert completed is not None
        assert completed.status == JobStatus.COMPLETED
        assert completed.result == {"output": "success"}
        assert completed.completed_at == NOW
        assert completed.error_message is None
        assert completed.lease_owner is None
        assert completed.is_terminal

    async def test_reschedule(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test job failure with retry available."""
        await self._create(repo, db_session)
        claimed = await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        run_at = NOW + timedelta(seconds=2)
        rescheduled = await repo.reschedule(claimed, error="Test error", run_at=run_at, now=NOW)
        await db_session.commit()

        assert rescheduled is not None
        assert rescheduled.status == JobStatus.PENDING
        assert rescheduled.attempt_count == 1
        assert rescheduled.error_message == "Test error"
        assert rescheduled.scheduled_at == run_at
        assert rescheduled.started_at is None
        assert not rescheduled.is_terminal
        assert rescheduled.remaining_attempts == 2

    async def test_mark_failed(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test moving a job to the terminal failed state."""
        await self._create(repo, db_session, max_attempts=1)
        claimed = await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        failed = await repo.mark_failed(claimed, error="Final error", now=NOW)
        await db_session.commit()

        assert failed is not None
        assert failed.status == JobStatus.FAILED
        assert failed.attempt_count == 1
        assert failed.error_message == "Final error"
        assert failed.completed_at == NOW

    async def test_resolve_requires_matching_lease(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that a stale snapshot cannot transition a job."""
        await self._create(repo, db_session)
        claimed = await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        completed = await repo.mark_completed(claimed, now=NOW)
        await db_session.commit()
        assert completed is not None

        # A second resolution of the same lease is refused
        assert await repo.mark_failed(claimed, error="late", now=NOW) is None

    async def test_reclaim_stale(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test recovery of abandoned processing jobs."""
        job = await self._create(repo, db_session)
        await repo.claim_next(worker_id="crashed-worker", now=NOW)
        await db_session.commit()

        later = NOW + timedelta(minutes=10)
        reclaimed = await repo.reclaim_stale(cutoff=later - timedelta(minutes=5), now=later)
        await db_session.commit()

        assert list(reclaimed) == [job.id]

        updated = await repo.get_job(job.id)
        assert updated.status == JobStatus.PENDING
        assert updated.lease_owner is None
        assert updated.started_at is None
        assert updated.scheduled_at == later
        assert updated.attempt_count == 0

    async def test_reclaim_stale_ignores_fresh_leases(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test that recent claims are left alone."""
        await self._create(repo, db_session)
        await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        reclaimed = await repo.reclaim_stale(cutoff=NOW - timedelta(minutes=5), now=NOW)

        assert list(reclaimed) == []

    async def test_get_job_stats(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Test job counts by status."""
        for _ in range(3):
            await self._create(repo, db_session)
        await repo.claim_next(worker_id="worker", now=NOW)
        await db_session.commit()

        stats = await repo.get_job_stats()

        assert stats == {
            "pending": 2,
            "processing": 1,
            "completed": 0,
            "failed": 0,
        }
