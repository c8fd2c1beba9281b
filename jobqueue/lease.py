"""
Lease manager: atomic claim of one eligible job.

Mutual exclusion between any number of dispatchers comes from the row lock
taken inside the claim statement (FOR UPDATE SKIP LOCKED); there is no
in-process or distributed lock.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import SPAN_CLAIM_JOB
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.store import JobStore

logger = logging.getLogger(__name__)


class LeaseManager:
    """Claims pending jobs on behalf of dispatchers."""

    def __init__(self, store: JobStore):
        self._store = store

    async def claim_next(
        self,
        worker_id: str,
        *,
        session: AsyncSession | None = None,
    ) -> Job | None:
        """
        Claim the earliest-scheduled eligible job.

        The claim is committed before this returns (unless the caller passed
        its own session), so the lease is visible to every other dispatcher
        and to the reaper.

        Args:
            worker_id: Identity recorded as the lease owner.
            session: Optional session to join.

        Returns:
            The claimed job in PROCESSING state, or None if nothing is eligible.

        Raises:
            StoreError: If the store is unreachable.
        """
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", worker_id)

            async with self._store.transaction(session) as active:
                job = await JobRepository(active).claim_next(
                    worker_id=worker_id,
                    now=self._store.clock(),
                )

            if job is None:
                return None

            span.set_attribute("job_id", str(job.id))

        get_metrics().record_lease_claimed(worker_id)
        return job
