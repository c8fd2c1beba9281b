"""
Job store: the public persistence surface of the queue.

Every operation either joins a caller-supplied session (so producers can
enqueue inside their own transaction) or opens, commits and closes its own.
Database and network failures surface as StoreError and nothing else.
"""

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.clock import Clock, utcnow
from jobqueue.config import Settings, get_settings
from jobqueue.constants import SPAN_ENQUEUE_JOB
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import StoreError
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


def to_timedelta(value: timedelta | float | int | None) -> timedelta:
    """Normalize a duration given as timedelta or seconds."""
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


class JobStore:
    """
    Durable persistence of job records.

    Holds no job state between calls; the database is the only source of
    truth. The lease manager, retry scheduler and reaper run their
    statements through transaction() so every failure is reported the
    same way.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory for database sessions.
            clock: Source of the current time.
            settings: Application settings. Defaults to get_settings().
        """
        self._session_factory = session_factory
        self.clock = clock
        self.settings = settings or get_settings()

    @asynccontextmanager
    async def transaction(
        self,
        session: AsyncSession | None = None,
    ) -> AsyncGenerator[AsyncSession]:
        """
        Run a unit of work against the store.

        If a session is given, statements join it and the caller commits.
        Otherwise a new session is opened and committed on success or
        rolled back on error.

        Yields:
            AsyncSession: The session to run statements on.

        Raises:
            StoreError: If the store is unreachable or a statement fails.
        """
        try:
            if session is not None:
                yield session
                return

            async with self._session_factory() as own_session:
                try:
                    yield own_session
                    await own_session.commit()
                except Exception:
                    await own_session.rollback()
                    raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("Job store operation failed", extra={"error": str(e)})
            raise StoreError(f"job store unavailable: {e}") from e

    async def enqueue(
        self,
        job_type: str,
        payload: Any,
        *,
        max_attempts: int | None = None,
        initial_delay: timedelta | float | None = None,
        session: AsyncSession | None = None,
    ) -> UUID:
        """
        Create a pending job.

        Args:
            job_type: Handler lookup key.
            payload: JSON-serializable handler input.
            max_attempts: Attempt ceiling. Defaults to settings.default_max_attempts.
            initial_delay: Delay before the job becomes eligible (timedelta or seconds).
            session: Optional session to join instead of committing separately.

        Returns:
            The new job's ID.

        Raises:
            ValueError: If max_attempts is below 1 or initial_delay is negative.
            TypeError: If the payload is not JSON serializable.
            StoreError: If the store is unreachable.
        """
        if max_attempts is None:
            max_attempts = self.settings.default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        delay = to_timedelta(initial_delay)
        if delay < timedelta(0):
            raise ValueError("initial_delay must not be negative")

        # The payload is stored in a JSON column; reject it before touching the store
        json.dumps(payload)

        now = self.clock()
        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("job_type", job_type)

            async with self.transaction(session) as active:
                job = await JobRepository(active).create_job(
                    job_type=job_type,
                    payload=payload,
                    max_attempts=max_attempts,
                    scheduled_at=now + delay,
                    now=now,
                )
                job_id = job.id

            span.set_attribute("job_id", str(job_id))

        get_metrics().record_job_enqueued(job_type)
        return job_id

    async def get_by_id(
        self,
        job_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> Job | None:
        """
        Get a snapshot of a job.

        Args:
            job_id: The job UUID.
            session: Optional session to join.

        Returns:
            The Job or None if not found.
        """
        async with self.transaction(session) as active:
            return await JobRepository(active).get_job(job_id)

    async def get_stats(self, *, session: AsyncSession | None = None) -> dict[str, int]:
        """
        Get job counts per status and publish them as the queue depth gauge.

        Returns:
            Dictionary of status -> count.
        """
        async with self.transaction(session) as active:
            stats = await JobRepository(active).get_job_stats()

        metrics = get_metrics()
        for status, count in stats.items():
            metrics.update_queue_depth(status, count)
        return stats
