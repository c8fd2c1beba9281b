"""
Pytest configuration and shared fixtures.

Tests run against TEST_DATABASE_URL when it is set (point it at PostgreSQL
to exercise real FOR UPDATE SKIP LOCKED); otherwise each test gets a fresh
SQLite database file through aiosqlite.
"""

import os
import random
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.config import Settings
from jobqueue.db import Base, create_engine, create_session_factory
from jobqueue.lease import LeaseManager
from jobqueue.reaper import Reaper
from jobqueue.retry import RetryPolicy, RetryScheduler
from jobqueue.store import JobStore
from jobqueue.worker import Dispatcher, HandlerRegistry

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

LEASE_TIMEOUT = timedelta(minutes=5)


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobqueue.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine with a freshly created jobs table."""
    engine = create_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for repository-level tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        log_level="DEBUG",
        log_format="console",
        worker_id="test-worker",
        worker_batch_size=1,
        worker_poll_interval_seconds=0.01,
        worker_max_backoff_seconds=0.05,
        lease_timeout_seconds=int(LEASE_TIMEOUT.total_seconds()),
        reaper_interval_seconds=1,
        default_max_attempts=3,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=60.0,
        retry_jitter_ratio=0.1,
    )


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def store(session_factory, clock: FakeClock, test_settings: Settings) -> JobStore:
    """Create a job store on the test database."""
    return JobStore(session_factory, clock=clock, settings=test_settings)


@pytest.fixture
def lease_manager(store: JobStore) -> LeaseManager:
    """Create a lease manager."""
    return LeaseManager(store)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Create a seeded retry policy."""
    return RetryPolicy(
        base_delay=1.0,
        max_delay=60.0,
        jitter_ratio=0.1,
        rng=random.Random(1234),
    )


@pytest.fixture
def retry_scheduler(store: JobStore, retry_policy: RetryPolicy) -> RetryScheduler:
    """Create a retry scheduler."""
    return RetryScheduler(store, retry_policy)


@pytest.fixture
def reaper(store: JobStore) -> Reaper:
    """Create a reaper with the test lease timeout."""
    return Reaper(store, lease_timeout=LEASE_TIMEOUT, interval_seconds=0.01)


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create an empty handler registry."""
    return HandlerRegistry()


@pytest.fixture
def dispatcher(
    store: JobStore,
    registry: HandlerRegistry,
    retry_policy: RetryPolicy,
) -> Dispatcher:
    """Create a dispatcher bound to the test registry."""
    return Dispatcher(
        store,
        registry,
        worker_id="dispatcher-1",
        batch_size=1,
        poll_interval=0.01,
        policy=retry_policy,
    )
