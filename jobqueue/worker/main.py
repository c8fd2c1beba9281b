"""
Dispatcher process for executing jobs.

The dispatcher claims jobs from the queue, runs their handlers, and
records the outcome, retrying or failing jobs according to the job
lifecycle. Any number of dispatchers may run against the same table.
"""

import asyncio
import logging
import os
import signal
import socket
import time

from jobqueue.config import get_settings
from jobqueue.constants import MIN_STORE_BACKOFF_SECONDS, SPAN_RESOLVE_JOB, JobStatus
from jobqueue.db import close_db, get_engine, init_db
from jobqueue.db.models import Job
from jobqueue.exceptions import StoreError
from jobqueue.lease import LeaseManager
from jobqueue.observability.logging import bind_context, job_log_context, setup_logging
from jobqueue.observability.metrics import get_metrics, start_metrics_server
from jobqueue.observability.tracing import get_tracer, instrument_engine, setup_tracing
from jobqueue.retry import RetryPolicy, RetryScheduler
from jobqueue.store import JobStore
from jobqueue.types.job import DispatchStats, Outcome, Retryable, Success
from jobqueue.worker.executor import Executor
from jobqueue.worker.handlers import HandlerRegistry, load_handler_modules

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    """Worker identity from hostname and PID."""
    return f"{socket.gethostname()}-{os.getpid()}"


class Dispatcher:
    """
    Claims, executes and resolves jobs.

    Features:
    - Atomic claims using FOR UPDATE SKIP LOCKED
    - Bounded batches of concurrent claim-execute-resolve cycles per tick
    - Exponential backoff of the tick loop while the store is unavailable
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        worker_id: str | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        policy: RetryPolicy | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: The job store.
            registry: Registry with all handlers already registered.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            batch_size: Claim cycles per tick.
            poll_interval: Seconds between ticks when the queue is empty.
            policy: Retry backoff policy.
        """
        settings = store.settings

        self.worker_id = worker_id or settings.worker_id or default_worker_id()
        self.batch_size = settings.worker_batch_size if batch_size is None else batch_size
        self.poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.max_backoff = settings.worker_max_backoff_seconds

        self.lease = LeaseManager(store)
        self.executor = Executor(registry)
        self.scheduler = RetryScheduler(store, policy)

        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    async def dispatch_once(self, batch_size: int | None = None) -> DispatchStats:
        """
        Run one tick: up to batch_size claim-execute-resolve cycles.

        Cycles run concurrently. Handler errors are recorded on the jobs;
        only store errors propagate, after every cycle has finished.

        Args:
            batch_size: Number of cycles. Defaults to the dispatcher's batch size.

        Returns:
            DispatchStats with succeeded, retried, failed and none_available counts.

        Raises:
            StoreError: If the store was unavailable during the tick.
        """
        size = self.batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValueError("batch_size must be at least 1")

        results = await asyncio.gather(
            *(self._run_cycle() for _ in range(size)),
            return_exceptions=True,
        )

        stats = DispatchStats()
        errors: list[BaseException] = []
        for outcome in results:
            if isinstance(outcome, BaseException):
                errors.append(outcome)
            elif outcome is not None:
                setattr(stats, outcome, getattr(stats, outcome) + 1)

        if stats.processed:
            logger.info(
                "Dispatch tick finished",
                extra={"worker_id": self.worker_id, **stats.model_dump()},
            )

        if errors:
            raise errors[0]
        return stats

    async def _run_cycle(self) -> str | None:
        """
        Claim one job, execute it and record the outcome.

        Returns:
            The DispatchStats field to increment, or None if the lease was
            lost before the outcome could be recorded.
        """
        job = await self.lease.claim_next(self.worker_id)
        if job is None:
            return "none_available"

        start_time = time.monotonic()
        with job_log_context(job.id, job.job_type, job.attempt_count + 1):
            outcome = await self.executor.run(job)
            updated = await self._resolve(job, outcome)

        if updated is None:
            return None

        label = self._label_for(updated)
        self._metrics.record_job_resolved(
            job_type=job.job_type,
            status=label,
            duration_seconds=time.monotonic() - start_time,
        )
        return label

    async def _resolve(self, job: Job, outcome: Outcome) -> Job | None:
        with get_tracer().start_as_current_span(SPAN_RESOLVE_JOB) as span:
            span.set_attribute("job_id", str(job.id))
            span.set_attribute("outcome", type(outcome).__name__)

            if isinstance(outcome, Success):
                return await self.scheduler.on_success(job, outcome.result)
            return await self.scheduler.on_failure(
                job,
                error=outcome.error,
                retryable=isinstance(outcome, Retryable),
            )

    @staticmethod
    def _label_for(job: Job) -> str:
        if job.status == JobStatus.COMPLETED:
            return "succeeded"
        if job.status == JobStatus.PENDING:
            return "retried"
        return "failed"

    async def start(self) -> None:
        """Run ticks until stop() is called."""
        logger.info(
            "Dispatcher starting",
            extra={
                "worker_id": self.worker_id,
                "batch_size": self.batch_size,
                "handlers": self.executor.registry.list(),
            },
        )

        self._running = True
        self._stop_event.clear()
        backoff = self.poll_interval

        while self._running:
            try:
                stats = await self.dispatch_once()
                backoff = self.poll_interval

                # Keep draining while the queue has work
                if stats.none_available:
                    await self._wait(self.poll_interval)

            except StoreError as e:
                self._metrics.record_dispatch_error(self.worker_id)
                logger.error(
                    f"Job store unavailable, retrying in {backoff:.1f}s",
                    extra={"worker_id": self.worker_id, "error": str(e)},
                )
                await self._wait(backoff)
                backoff = min(max(backoff * 2, MIN_STORE_BACKOFF_SECONDS), self.max_backoff)

            except Exception as e:
                logger.exception(
                    f"Error in dispatcher loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await self._wait(self.poll_interval)

        logger.info("Dispatcher stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop after the current tick finishes."""
        logger.info("Dispatcher stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def _wait(self, seconds: float) -> None:
        """Sleep, waking early when stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass


async def run_async() -> None:
    """Run the dispatcher asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    if settings.otel_enabled:
        setup_tracing(settings)
    start_metrics_server(settings.prometheus_port)

    session_factory = await init_db()
    if settings.otel_enabled:
        instrument_engine(get_engine())
    store = JobStore(session_factory, settings=settings)

    registry = HandlerRegistry()
    load_handler_modules(registry, settings.handler_modules)
    if not registry.list():
        logger.warning("No job handlers registered; every job will fail")

    dispatcher = Dispatcher(store, registry)
    bind_context(component="dispatcher", worker_id=dispatcher.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(dispatcher.stop())
        )

    try:
        await dispatcher.start()
    finally:
        await close_db()


def run() -> None:
    """Run the dispatcher."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
