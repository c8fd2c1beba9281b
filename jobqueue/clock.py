"""
Time source for queue operations.

All persisted timestamps are naive UTC. Components take a clock callable so
tests can move time forward without sleeping.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
