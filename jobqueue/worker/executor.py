"""
Executor: runs the handler registered for a job and classifies the outcome.

The executor never touches the store. The dispatcher applies the outcome
through the retry scheduler.
"""

import asyncio
import copy
import inspect
import json
import logging

from jobqueue.constants import SPAN_EXECUTE_JOB
from jobqueue.db.models import Job
from jobqueue.exceptions import FatalJobError, NoHandlerError, RetryableJobError
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import Fatal, JobContext, Outcome, Retryable, Success
from jobqueue.worker.handlers import HandlerRegistry

logger = logging.getLogger(__name__)


class Executor:
    """Looks up and invokes job handlers."""

    def __init__(self, registry: HandlerRegistry):
        self.registry = registry

    def build_context(self, job: Job) -> JobContext:
        """
        Create the handler context for a claimed job.

        The payload is deep-copied so a handler cannot alter the job snapshot
        held by the dispatcher.
        """
        return JobContext(
            job_id=job.id,
            job_type=job.job_type,
            payload=copy.deepcopy(job.payload),
            attempt=job.attempt_count + 1,
            max_attempts=job.max_attempts,
            lease_owner=job.lease_owner,
            started_at=job.started_at,
        )

    async def run(self, job: Job) -> Outcome:
        """
        Execute a job using the appropriate handler.

        Args:
            job: The claimed job.

        Returns:
            Success, Retryable or Fatal. Handler exceptions never escape.
        """
        handler = self.registry.get(job.job_type)
        if handler is None:
            error = NoHandlerError(job.job_type)
            logger.error(
                error.message,
                extra={"job_id": str(job.id), "job_type": job.job_type},
            )
            return Fatal(error.message)

        context = self.build_context(job)

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", str(job.id))
            span.set_attribute("job_type", job.job_type)
            span.set_attribute("attempt", context.attempt)

            try:
                if inspect.iscoroutinefunction(handler):
                    value = await handler(context)
                else:
                    # Plain callables may block, so they run in a worker thread
                    value = await asyncio.to_thread(handler, context)
                    if inspect.isawaitable(value):
                        value = await value
            except FatalJobError as e:
                logger.warning(
                    "Handler raised fatal error",
                    extra={"job_id": str(job.id), "error": str(e)},
                )
                return Fatal(str(e))
            except Exception as e:
                logger.exception(
                    "Handler raised exception",
                    extra={"job_id": str(job.id), "error": str(e)},
                )
                if isinstance(e, RetryableJobError):
                    return Retryable(str(e))
                return Retryable(f"{type(e).__name__}: {e}")

        if isinstance(value, (Retryable, Fatal)):
            return value
        if not isinstance(value, Success):
            value = Success(value)

        # The result is stored in a JSON column
        try:
            json.dumps(value.result)
        except (TypeError, ValueError) as e:
            return Fatal(f"handler result is not JSON serializable: {e}")
        return value
