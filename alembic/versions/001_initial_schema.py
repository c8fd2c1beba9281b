"""Initial schema with jobs table

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('pending', 'processing', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM("pending", "processing", "completed", "failed", name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "scheduled_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.text("(now() at time zone 'utc')"),
        ),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("attempt_count >= 0", name="ck_jobs_attempt_count_non_negative"),
        sa.CheckConstraint("max_attempts >= 1", name="ck_jobs_max_attempts_positive"),
        sa.CheckConstraint("attempt_count <= max_attempts", name="ck_jobs_attempts_within_max"),
    )

    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_claim", "jobs", ["status", "scheduled_at"])
    op.create_index("ix_jobs_lease", "jobs", ["status", "started_at"])

    # Partial indexes keep the hot claim and reaper scans small
    op.execute("""
        CREATE INDEX ix_jobs_pending_poll
        ON jobs (scheduled_at, created_at)
        WHERE status = 'pending'
    """)

    op.execute("""
        CREATE INDEX ix_jobs_processing_started
        ON jobs (started_at)
        WHERE status = 'processing'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_jobs_processing_started")
    op.execute("DROP INDEX IF EXISTS ix_jobs_pending_poll")
    op.drop_index("ix_jobs_lease")
    op.drop_index("ix_jobs_claim")
    op.drop_index("ix_jobs_status")
    op.drop_index("ix_jobs_job_type")

    op.drop_table("jobs")

    op.execute("DROP TYPE IF EXISTS job_status")
