"""Initial schema with jobs, batches and dead_letters tables

Revision ID: 001
Revises: 
Create Date: 2024-01-01 00:00:00.000000

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

JOB_STATUSES = ("pending", "processing", "completed", "retry_scheduled", "failed")


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    labels = ", ".join(f"'{status}'" for status in JOB_STATUSES)
    op.execute(f"""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ({labels});
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Create batches table
    op.create_table(
        "batches",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("total", sa.Integer, nullable=False),
        sa.Column("completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("seq", sa.BigInteger, sa.Identity(), nullable=False),
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(*JOB_STATUSES, name="job_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("score", sa.Float(precision=53), nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worker_id", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("batch_id", sa.Uuid, sa.ForeignKey("batches.id"), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id"),
    )

    # Create indexes
    op.create_index("ix_jobs_claim", "jobs", ["queue_name", "status", "score", "seq"])
    op.create_index("ix_jobs_scheduled", "jobs", ["queue_name", "status", "run_at"])
    op.create_index("ix_jobs_lease_expiry", "jobs", ["status", "lease_expires_at"])
    op.create_index("ix_jobs_completed_at", "jobs", ["completed_at"])
    op.create_index("ix_jobs_batch_id", "jobs", ["batch_id"])

    # Create dead_letters table
    op.create_table(
        "dead_letters",
        sa.Column("seq", sa.BigInteger, sa.Identity(), nullable=False),
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("job_id", sa.Uuid, nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("payload", sa.LargeBinary, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("batch_id", sa.Uuid, nullable=True),
        sa.Column("error", sa.Text, nullable=False),
        sa.Column("job_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("job_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id"),
    )
    op.create_index("ix_dead_letters_job_id", "dead_letters", ["job_id"])
    op.create_index("ix_dead_letters_queue_name", "dead_letters", ["queue_name"])


def downgrade() -> None:
    # Drop indexes
    op.drop_index("ix_dead_letters_queue_name")
    op.drop_index("ix_dead_letters_job_id")
    op.drop_index("ix_jobs_batch_id")
    op.drop_index("ix_jobs_completed_at")
    op.drop_index("ix_jobs_lease_expiry")
    op.drop_index("ix_jobs_scheduled")
    op.drop_index("ix_jobs_claim")

    # Drop tables
    op.drop_table("dead_letters")
    op.drop_table("jobs")
    op.drop_table("batches")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS job_status")
