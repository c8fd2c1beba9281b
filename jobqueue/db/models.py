"""
SQLAlchemy database models.
Defines the Job table, the single persisted entity of the queue.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.clock import utcnow
from jobqueue.constants import DEFAULT_MAX_ATTEMPTS, TERMINAL_STATUSES, JobStatus

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of deferred work.

    This is the authoritative source of truth for job state.
    All lifecycle transitions are single guarded UPDATE statements
    issued by the repository; nothing reads a row and writes it back.

    Key constraints:
    - attempt_count never exceeds max_attempts
    - a processing row always has started_at set
    - lease_owner records which dispatcher holds the claim
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Handler lookup key
    job_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    # Job payload, opaque to the queue
    payload: Mapped[Any] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    # Retry tracking
    attempt_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Scheduling and lease
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Outcome tracking
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    result: Mapped[Any | None] = mapped_column(
        JSONDocument,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("attempt_count >= 0", name="ck_jobs_attempt_count_non_negative"),
        CheckConstraint("max_attempts >= 1", name="ck_jobs_max_attempts_positive"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_jobs_attempts_within_max"),
        # Claim path: earliest eligible pending row
        Index("ix_jobs_claim", "status", "scheduled_at"),
        # Reaper path: oldest processing rows
        Index("ix_jobs_lease", "status", "started_at"),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_attempts(self) -> int:
        """Get the number of attempts left before the job fails."""
        return max(0, self.max_attempts - self.attempt_count)

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.job_type}, "
            f"status={self.status}, attempt={self.attempt_count}/{self.max_attempts})"
        )
