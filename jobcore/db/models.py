"""
SQLAlchemy database models.
Defines the jobs, batches and dead_letters tables.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobcore.clock import ensure_utc
from jobcore.constants import JobStatus
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobView

# SQLite only autoincrements INTEGER PRIMARY KEY columns
SequenceKey = BigInteger().with_variant(Integer, "sqlite")
JsonColumn = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Batch(Base):
    """
    Completion counters for jobs submitted together.

    Counters are only ever changed with in-database increments in the same
    transaction as the member job's terminal transition.
    """

    __tablename__ = "batches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_view(self) -> BatchView:
        return BatchView(
            id=self.id,
            queue_name=self.queue_name,
            total=self.total,
            completed=self.completed,
            failed=self.failed,
            created_at=ensure_utc(self.created_at),
        )


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This table is both the priority queue (rows in ``pending`` ordered by
    ``score``) and the status table. ``seq`` breaks score ties in insertion
    order.

    Key constraints:
    - ``id`` is unique and never reused
    - a ``processing`` row carries ``worker_id`` and ``lease_expires_at``
    - status transitions follow the JobStatus state machine
    """

    __tablename__ = "jobs"

    seq: Mapped[int] = mapped_column(SequenceKey, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True, default=uuid4)

    queue_name: Mapped[str] = mapped_column(String(255), nullable=False)
    job_type: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.PENDING,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float(precision=53), nullable=False)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Claim ownership
    worker_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    batch_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("batches.id"),
        nullable=True,
        index=True,
    )

    # Timestamps
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[Any] = mapped_column(JsonColumn, nullable=True)

    __table_args__ = (
        # Claim path: lowest score among a queue's pending rows
        Index("ix_jobs_claim", "queue_name", "status", "score", "seq"),
        # Retry promotion
        Index("ix_jobs_scheduled", "queue_name", "status", "run_at"),
        # Lease expiry checks
        Index("ix_jobs_lease_expiry", "status", "lease_expires_at"),
        Index("ix_jobs_completed_at", "completed_at"),
    )

    def to_view(self) -> JobView:
        return JobView(
            id=self.id,
            queue_name=self.queue_name,
            job_type=self.job_type,
            payload=self.payload,
            priority=self.priority,
            status=JobStatus(self.status),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            batch_id=self.batch_id,
            score=self.score,
            enqueued_at=ensure_utc(self.enqueued_at),
            run_at=ensure_utc(self.run_at),
            worker_id=self.worker_id,
            lease_expires_at=ensure_utc(self.lease_expires_at),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
            started_at=ensure_utc(self.started_at),
            completed_at=ensure_utc(self.completed_at),
            last_error=self.last_error,
            result=self.result,
        )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, queue={self.queue_name}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )


class DeadLetter(Base):
    """Append-only snapshot of a job that exhausted its retries."""

    __tablename__ = "dead_letters"

    seq: Mapped[int] = mapped_column(SequenceKey, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True, default=uuid4)

    job_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    queue_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    job_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    job_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_job(cls, job: Job, error: str, failed_at: datetime) -> "DeadLetter":
        return cls(
            id=uuid4(),
            job_id=job.id,
            queue_name=job.queue_name,
            job_type=job.job_type,
            payload=job.payload,
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            batch_id=job.batch_id,
            error=error,
            job_created_at=job.created_at,
            job_started_at=job.started_at,
            failed_at=failed_at,
        )

    def to_view(self) -> DeadLetterView:
        return DeadLetterView(
            id=self.id,
            job_id=self.job_id,
            queue_name=self.queue_name,
            job_type=self.job_type,
            payload=self.payload,
            priority=self.priority,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            batch_id=self.batch_id,
            error=self.error,
            job_created_at=ensure_utc(self.job_created_at),
            job_started_at=ensure_utc(self.job_started_at),
            failed_at=ensure_utc(self.failed_at),
        )
