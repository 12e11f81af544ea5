"""
SQLAlchemy database models.
Defines the broker's job table, the side-effect reservation table, and the
dead-letter store.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import (
    DEFAULT_BACKOFF_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    BackoffKind,
    JobState,
    SideEffectState,
)


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in a queue.

    This is the authoritative source of truth for job state and attempt
    counts. All lifecycle transitions are managed through this table.

    Key constraints:
    - id is the sha256 hex of the idempotency key, so resubmissions collide
    - lease_owner and lease_expires_at track leasing for at-least-once delivery
    - lease_token is fresh on every lease; settling a job requires the token
    - available_at holds back delayed (retrying) jobs
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    queue: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(255), nullable=False)

    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=_enum_values),
        nullable=False,
        default=JobState.WAITING,
        index=True,
    )

    # Retry tracking
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )
    backoff_kind: Mapped[BackoffKind] = mapped_column(
        Enum(BackoffKind, name="backoff_kind", create_constraint=True, values_callable=_enum_values),
        nullable=False,
        default=BackoffKind.FIXED,
    )
    backoff_delay_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_BACKOFF_DELAY_MS,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Scheduling
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # Index for efficient queue polling
        Index(
            "ix_jobs_queue_poll",
            "queue",
            "available_at",
            postgresql_where=(Column("state").in_([JobState.WAITING, JobState.DELAYED])),
        ),
        # Index for lease expiry checks
        Index(
            "ix_jobs_lease_expiry",
            "lease_expires_at",
            postgresql_where=(Column("state") == JobState.ACTIVE),
        ),
    )

    @property
    def is_retryable(self) -> bool:
        """Check if another failure would still be retried."""
        return self.attempts_made + 1 < self.max_attempts

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, queue={self.queue}, type={self.type}, "
            f"state={self.state}, attempts={self.attempts_made}/{self.max_attempts})"
        )


class SideEffect(Base):
    """
    Key-value row fencing an externally visible side effect.

    Inserting the row is the compare-and-swap that wins the reservation.
    """

    __tablename__ = "side_effects"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[SideEffectState] = mapped_column(
        Enum(SideEffectState, name="side_effect_state", create_constraint=True, values_callable=_enum_values),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class DeadLetter(Base):
    """
    Dead-letter store entry for a job that exhausted its attempts.

    original_job_id is unique: a job can be escalated only once.
    """

    __tablename__ = "dead_letters"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )
    original_job_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    job_type: Mapped[str] = mapped_column(String(255), nullable=False)
    queue: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    failed_reason: Mapped[str] = mapped_column(Text, nullable=False)
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )

    # Replay bookkeeping
    replay_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_replayed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_replay_job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return (
            f"DeadLetter(id={self.id}, original_job_id={self.original_job_id}, "
            f"type={self.job_type}, attempts={self.attempts_made})"
        )
