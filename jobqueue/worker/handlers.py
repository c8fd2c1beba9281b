"""
Job handler registry.

Job handlers must be idempotent - they may be executed more than once
for the same job when a worker crashes after the handler ran but before
the outcome was recorded.

A handler receives a JobContext and may:
- return any JSON-serializable value (stored as the job result),
- return Success, Retryable or Fatal explicitly,
- raise FatalJobError to fail the job immediately,
- raise anything else to have the attempt retried.

Coroutine handlers run on the event loop. Plain functions run in a worker
thread, so a blocking handler does not stall the other cycles of a tick.
"""

import importlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jobqueue.types.job import JobContext

logger = logging.getLogger(__name__)

# Type alias for job handler functions (async or plain callables)
JobHandler = Callable[[JobContext], Awaitable[Any] | Any]


class HandlerRegistry:
    """
    Maps job types to handlers.

    Populated once at startup, before the dispatch loop begins. Any number
    of jobs of the same type may run concurrently; the registry holds no
    per-type execution state.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        """
        Register a handler for a job type.

        Args:
            job_type: The job type this handler processes.
            handler: The handler callable.

        Raises:
            ValueError: If a handler is already registered for the type.
        """
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type: {job_type}")
        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a job handler.

        Example:
            @registry.handler("send_email")
            async def handle_send_email(context: JobContext) -> dict:
                ...
        """

        def decorator(func: JobHandler) -> JobHandler:
            self.register(job_type, func)
            return func

        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        """
        Get the handler for a job type.

        Args:
            job_type: The job type.

        Returns:
            The handler or None if not found.
        """
        return self._handlers.get(job_type)

    def list(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


def load_handler_modules(registry: HandlerRegistry, module_names: list[str]) -> None:
    """
    Import application handler modules and let them register their handlers.

    Each module must expose register_handlers(registry).

    Args:
        registry: The registry to populate.
        module_names: Dotted module paths.

    Raises:
        AttributeError: If a module has no register_handlers function.
    """
    for name in module_names:
        module = importlib.import_module(name)
        register = getattr(module, "register_handlers", None)
        if register is None:
            raise AttributeError(f"Handler module {name} has no register_handlers(registry)")
        register(registry)
        logger.debug(f"Loaded handler module: {name}")
