"""
PostgreSQL implementations of the broker, key-value and dead-letter capabilities.

Each call runs in its own session and commits when it returns, so every
operation is a single atomic unit against the shared database.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import SideEffectState
from jobqueue.db.connection import get_session_context
from jobqueue.db.models import DeadLetter, Job
from jobqueue.db.repository import DeadLetterRepository, JobRepository, SideEffectRepository
from jobqueue.types.job import (
    BackoffPolicy,
    DeadLetterRecord,
    EnqueueResult,
    QueueCounts,
    QueuedJob,
)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def job_from_row(row: Job) -> QueuedJob:
    """Convert a Job row to the broker-facing dataclass."""
    return QueuedJob(
        id=row.id,
        type=row.type,
        queue=row.queue,
        payload=dict(row.payload or {}),
        attempts_made=row.attempts_made,
        max_attempts=row.max_attempts,
        backoff=BackoffPolicy(kind=row.backoff_kind, delay_ms=row.backoff_delay_ms),
        state=row.state,
        created_at=row.created_at,
        processed_at=row.processed_at,
        finished_at=row.finished_at,
        failed_reason=row.failed_reason,
        lease_owner=row.lease_owner,
        lease_token=row.lease_token,
        lease_expires_at=row.lease_expires_at,
    )


def record_from_row(row: DeadLetter) -> DeadLetterRecord:
    """Convert a DeadLetter row to a DeadLetterRecord."""
    return DeadLetterRecord(
        id=row.id,
        original_job_id=row.original_job_id,
        job_type=row.job_type,
        queue=row.queue,
        payload=dict(row.payload or {}),
        failed_reason=row.failed_reason,
        attempts_made=row.attempts_made,
        failed_at=row.failed_at,
        replay_count=row.replay_count,
        last_replayed_at=row.last_replayed_at,
        last_replay_job_id=row.last_replay_job_id,
    )


class PostgresJobBroker:
    """Job broker backed by the ``jobs`` table."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def enqueue(
        self,
        queue: str,
        job_id: str,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_attempts: int,
        backoff: BackoffPolicy,
    ) -> EnqueueResult:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            job, created = await repo.create_job(
                job_id=job_id,
                queue=queue,
                job_type=job_type,
                payload=payload,
                max_attempts=max_attempts,
                backoff=backoff,
            )
            return EnqueueResult(job_id=job.id, created=created)

    async def lease(self, queue: str, worker_id: str, *, lease_seconds: int) -> QueuedJob | None:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            jobs = await repo.acquire_lease(
                queue=queue,
                worker_id=worker_id,
                lease_seconds=lease_seconds,
                batch_size=1,
            )
            return job_from_row(jobs[0]) if jobs else None

    async def ack(self, job: QueuedJob, worker_id: str) -> bool:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            return await repo.complete_job(job.id, worker_id, job.lease_token) is not None

    async def retry_later(
        self,
        job: QueuedJob,
        worker_id: str,
        reason: str,
        delay_ms: int,
    ) -> QueuedJob | None:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            row = await repo.retry_job(
                job_id=job.id,
                worker_id=worker_id,
                lease_token=job.lease_token,
                expected_attempts=job.attempts_made,
                reason=reason,
                delay_ms=delay_ms,
            )
            return job_from_row(row) if row else None

    async def fail(self, job: QueuedJob, worker_id: str, reason: str) -> QueuedJob | None:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            row = await repo.fail_job(
                job_id=job.id,
                worker_id=worker_id,
                lease_token=job.lease_token,
                expected_attempts=job.attempts_made,
                reason=reason,
            )
            return job_from_row(row) if row else None

    async def extend_lease(self, job: QueuedJob, worker_id: str, *, lease_seconds: int) -> bool:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            return await repo.extend_lease(job.id, worker_id, job.lease_token, lease_seconds)

    async def recover_expired_leases(self) -> int:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            return await repo.recover_expired_leases()

    async def get_job(self, job_id: str) -> QueuedJob | None:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            row = await repo.get_job(job_id)
            return job_from_row(row) if row else None

    async def counts(self, queue: str) -> QueueCounts:
        async with self._session_factory() as session:
            repo = JobRepository(session)
            return await repo.get_queue_counts(queue)


class PostgresKeyValueStore:
    """Key-value store backed by the ``side_effects`` table."""

    def __init__(
        self,
        session_factory: SessionFactory = get_session_context,
        stale_after_seconds: int = 0,
    ):
        self._session_factory = session_factory
        self._stale_after = timedelta(seconds=stale_after_seconds) if stale_after_seconds > 0 else None

    async def set_if_absent(self, key: str, value: SideEffectState) -> bool:
        async with self._session_factory() as session:
            repo = SideEffectRepository(session)
            return await repo.set_if_absent(key, value, stale_after=self._stale_after)

    async def set(self, key: str, value: SideEffectState) -> None:
        async with self._session_factory() as session:
            repo = SideEffectRepository(session)
            await repo.set(key, value)

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            repo = SideEffectRepository(session)
            await repo.delete(key)


class PostgresDeadLetterStore:
    """Dead-letter store backed by the ``dead_letters`` table."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def add(self, job: QueuedJob, reason: str, failed_at: datetime) -> DeadLetterRecord | None:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            row = await repo.create(
                original_job_id=job.id,
                job_type=job.type,
                queue=job.queue,
                payload=job.payload,
                failed_reason=reason,
                attempts_made=job.attempts_made,
                failed_at=failed_at,
            )
            return record_from_row(row) if row else None

    async def get(self, record_id: UUID) -> DeadLetterRecord | None:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            row = await repo.get(record_id)
            return record_from_row(row) if row else None

    async def list_recent(self, limit: int) -> list[DeadLetterRecord]:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            rows = await repo.list_recent(limit)
            return [record_from_row(row) for row in rows]

    async def count(self) -> int:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            return await repo.count()

    async def begin_replay(self, record_id: UUID) -> DeadLetterRecord | None:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            row = await repo.begin_replay(record_id)
            return record_from_row(row) if row else None

    async def finish_replay(self, record_id: UUID, job_id: str) -> None:
        async with self._session_factory() as session:
            repo = DeadLetterRepository(session)
            await repo.finish_replay(record_id, job_id)
