"""
Integration tests for the job store.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from jobqueue.constants import JobStatus
from jobqueue.db import create_engine, create_session_factory
from jobqueue.exceptions import StoreError
from jobqueue.store import JobStore


class TestJobStore:
    """Tests for JobStore."""

    async def test_enqueue_defaults(self, store: JobStore, clock):
        """Test a job is created pending and immediately eligible."""
        job_id = await store.enqueue("echo", {"message": "hello"})

        job = await store.get_by_id(job_id)

        assert job is not None
        assert job.job_type == "echo"
        assert job.payload == {"message": "hello"}
        assert job.status == JobStatus.PENDING
        assert job.attempt_count == 0
        assert job.max_attempts == 3
        assert job.scheduled_at == clock()
        assert job.created_at == clock()
        assert job.error_message is None

    async def test_enqueue_options(self, store: JobStore, clock):
        """Test max_attempts and initial_delay options."""
        job_id = await store.enqueue(
            "echo",
            {"message": "later"},
            max_attempts=5,
            initial_delay=timedelta(seconds=60),
        )

        job = await store.get_by_id(job_id)

        assert job.max_attempts == 5
        assert job.scheduled_at == clock() + timedelta(seconds=60)

    async def test_enqueue_delay_in_seconds(self, store: JobStore, clock):
        """Test initial_delay given as seconds."""
        job_id = await store.enqueue("echo", {}, initial_delay=30)

        job = await store.get_by_id(job_id)

        assert job.scheduled_at == clock() + timedelta(seconds=30)

    async def test_enqueue_accepts_non_dict_payload(self, store: JobStore):
        """Test the payload is opaque to the queue."""
        job_id = await store.enqueue("echo", ["a", 1, None])

        job = await store.get_by_id(job_id)

        assert job.payload == ["a", 1, None]

    async def test_enqueue_rejects_invalid_max_attempts(self, store: JobStore):
        """Test that an attempt ceiling below one is rejected."""
        with pytest.raises(ValueError):
            await store.enqueue("echo", {}, max_attempts=0)

    async def test_enqueue_rejects_negative_delay(self, store: JobStore):
        """Test that a negative delay is rejected."""
        with pytest.raises(ValueError):
            await store.enqueue("echo", {}, initial_delay=-1)

    async def test_enqueue_rejects_unserializable_payload(self, store: JobStore):
        """Test a payload that cannot be stored raises TypeError, not StoreError."""
        with pytest.raises(TypeError):
            await store.enqueue("echo", {"when": datetime(2026, 1, 1)})

        stats = await store.get_stats()
        assert stats["pending"] == 0

    async def test_get_by_id_not_found(self, store: JobStore):
        """Test getting a non-existent job."""
        assert await store.get_by_id(uuid4()) is None

    async def test_enqueue_joins_caller_transaction(self, store: JobStore, session_factory):
        """Test that enqueue inside a rolled back transaction leaves no job."""
        async with session_factory() as session:
            job_id = await store.enqueue("echo", {}, session=session)
            await session.rollback()

        assert await store.get_by_id(job_id) is None

    async def test_enqueue_commits_with_caller_transaction(self, store: JobStore, session_factory):
        """Test that enqueue inside a committed transaction persists the job."""
        async with session_factory() as session:
            job_id = await store.enqueue("echo", {}, session=session)
            await session.commit()

        assert await store.get_by_id(job_id) is not None

    async def test_get_stats(self, store: JobStore, lease_manager):
        """Test job counts per status."""
        await store.enqueue("echo", {})
        await store.enqueue("echo", {})
        await lease_manager.claim_next("worker")

        stats = await store.get_stats()

        assert stats["pending"] == 1
        assert stats["processing"] == 1
        assert stats["completed"] == 0
        assert stats["failed"] == 0


class TestStoreUnavailable:
    """Tests for store connectivity failures."""

    @pytest.fixture
    async def broken_store(self, tmp_path, test_settings):
        engine = create_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'jobs.db'}",
            echo=False,
        )
        yield JobStore(create_session_factory(engine), settings=test_settings)
        await engine.dispose()

    async def test_enqueue_raises_store_error(self, broken_store: JobStore):
        """Test that an unreachable store surfaces as StoreError."""
        with pytest.raises(StoreError):
            await broken_store.enqueue("echo", {})

    async def test_get_by_id_raises_store_error(self, broken_store: JobStore):
        """Test that reads surface StoreError too."""
        with pytest.raises(StoreError):
            await broken_store.get_by_id(uuid4())
