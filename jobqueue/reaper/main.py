"""
Stale-lease reaper for recovering abandoned jobs.

A dispatcher that crashes mid-execution leaves its job in PROCESSING
forever. The reaper runs periodically, finds jobs claimed longer ago
than the lease timeout, and returns them to the queue. Their attempt
count is left unchanged.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_RECLAIM_STALE
from jobqueue.db import close_db, get_engine, init_db
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import StoreError
from jobqueue.observability.logging import bind_context, setup_logging
from jobqueue.observability.metrics import get_metrics, start_metrics_server
from jobqueue.observability.tracing import get_tracer, instrument_engine, setup_tracing
from jobqueue.store import JobStore, to_timedelta

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers jobs stuck in PROCESSING.

    Runs periodically to:
    1. Find jobs in PROCESSING whose started_at is older than the lease timeout
    2. Return them to PENDING, eligible immediately
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        store: JobStore,
        lease_timeout: timedelta | float | None = None,
        interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: The job store.
            lease_timeout: Age after which a claim is presumed dead.
            interval_seconds: Seconds between reaper runs.
        """
        settings = store.settings
        self._store = store
        self.lease_timeout = to_timedelta(
            lease_timeout if lease_timeout is not None else settings.lease_timeout_seconds
        )
        self.interval = settings.reaper_interval_seconds if interval_seconds is None else interval_seconds
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    async def reclaim_stale(
        self,
        lease_timeout: timedelta | float | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Return jobs whose lease timed out to the queue.

        Args:
            lease_timeout: Overrides the reaper's configured timeout.
            session: Optional session to join.

        Returns:
            Number of jobs reclaimed.

        Raises:
            StoreError: If the store is unreachable.
        """
        timeout = self.lease_timeout if lease_timeout is None else to_timedelta(lease_timeout)
        now = self._store.clock()

        with get_tracer().start_as_current_span(SPAN_RECLAIM_STALE) as span:
            span.set_attribute("lease_timeout_seconds", timeout.total_seconds())

            async with self._store.transaction(session) as active:
                job_ids = await JobRepository(active).reclaim_stale(
                    cutoff=now - timeout,
                    now=now,
                )

            span.set_attribute("reclaimed", len(job_ids))

        if job_ids:
            self._metrics.record_leases_reclaimed(len(job_ids))
        return len(job_ids)

    async def run_once(self) -> int:
        """
        Run the reaper once (for testing or cron-style execution).

        Also refreshes the queue depth gauge.

        Returns:
            Number of jobs reclaimed.
        """
        reclaimed = await self.reclaim_stale()
        await self._store.get_stats()
        return reclaimed

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"lease_timeout_seconds": self.lease_timeout.total_seconds()},
        )
        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                reclaimed = await self.run_once()

                if reclaimed > 0:
                    logger.info(f"Reclaimed {reclaimed} stale leases")

            except StoreError as e:
                logger.error(f"Job store unavailable in reaper: {e}")
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stop_event.set()


async def run_async() -> None:
    """Run the reaper asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    bind_context(component="reaper")
    if settings.otel_enabled:
        setup_tracing(settings)
    if settings.reaper_prometheus_port is not None:
        start_metrics_server(settings.reaper_prometheus_port)

    session_factory = await init_db()
    if settings.otel_enabled:
        instrument_engine(get_engine())
    reaper = Reaper(JobStore(session_factory, settings=settings))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
