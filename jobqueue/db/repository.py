"""
Repositories for database operations.
Implements the broker, key-value and dead-letter access patterns on PostgreSQL.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import String, and_, cast, delete, func, literal_column, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import JobState, SideEffectState
from jobqueue.db.models import DeadLetter, Job, SideEffect
from jobqueue.types.job import BackoffPolicy, QueueCounts

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository:
    """
    Repository for job (broker) operations.

    Implements atomic operations for:
    - Job submission deduplicated on the derived job id
    - Lease acquisition with FOR UPDATE SKIP LOCKED
    - Ack, retry-with-delay and terminal failure, all fenced on lease owner
      and lease token
    - Lease expiry handling
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        job_id: str,
        queue: str,
        job_type: str,
        payload: dict[str, Any],
        max_attempts: int,
        backoff: BackoffPolicy,
    ) -> tuple[Job, bool]:
        """
        Create a new job unless one with the same id exists.

        Uses INSERT ... ON CONFLICT DO NOTHING on the primary key, so two
        concurrent submissions of the same id yield a single row.

        Returns:
            Tuple of (Job, created) where created is True if a new job was created.
        """
        now = _now()
        stmt = insert(Job).values(
            id=job_id,
            queue=queue,
            type=job_type,
            payload=payload,
            max_attempts=max_attempts,
            backoff_kind=backoff.kind,
            backoff_delay_ms=backoff.delay_ms,
            attempts_made=0,
            state=JobState.WAITING,
            available_at=now,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(
            index_elements=[Job.id]
        ).returning(Job)

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Created new job",
                extra={"job_id": job_id, "queue": queue, "job_type": job_type}
            )
            return job, True

        existing = await self.get_job(job_id)
        if existing is None:
            raise RuntimeError("Job should exist after conflict")

        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": job_id, "queue": existing.queue}
        )
        return existing, False

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def acquire_lease(
        self,
        queue: str,
        worker_id: str,
        lease_seconds: int,
        batch_size: int = 1,
    ) -> Sequence[Job]:
        """
        Acquire leases on available jobs of one queue.

        Waiting jobs and delayed jobs whose delay has elapsed are eligible,
        oldest ``available_at`` first. A retried job therefore re-enters
        behind jobs that arrived while it was delayed. Each lease gets a
        fresh ``lease_token`` that every later transition must present.

        Args:
            queue: The queue name.
            worker_id: The worker identifier.
            lease_seconds: Lease duration.
            batch_size: Number of jobs to acquire.

        Returns:
            List of leased jobs.
        """
        now = _now()
        candidates = (
            select(Job.id)
            .where(
                and_(
                    Job.queue == queue,
                    Job.state.in_([JobState.WAITING, JobState.DELAYED]),
                    Job.available_at <= now,
                )
            )
            .order_by(Job.available_at.asc(), Job.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(Job.id.in_(candidates))
            .values(
                state=JobState.ACTIVE,
                lease_owner=worker_id,
                lease_token=cast(func.gen_random_uuid(), String),
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                processed_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        if jobs:
            logger.debug(
                f"Acquired lease on {len(jobs)} jobs",
                extra={"worker_id": worker_id, "queue": queue, "job_count": len(jobs)}
            )

        return jobs

    async def complete_job(self, job_id: str, worker_id: str, lease_token: str) -> Job | None:
        """
        Mark an active job as completed (ack).

        Returns:
            Updated Job or None if the worker no longer holds this lease.
        """
        now = _now()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.state == JobState.ACTIVE,
                    Job.lease_owner == worker_id,
                    Job.lease_token == lease_token,
                )
            )
            .values(
                state=JobState.COMPLETED,
                finished_at=now,
                updated_at=now,
                lease_owner=None,
                lease_token=None,
                lease_expires_at=None,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def retry_job(
        self,
        job_id: str,
        worker_id: str,
        lease_token: str,
        expected_attempts: int,
        reason: str,
        delay_ms: int,
    ) -> Job | None:
        """
        Count a failed attempt and schedule redelivery after ``delay_ms``.

        The update only applies while the worker holds this lease and the
        attempt counter still equals ``expected_attempts``.

        Returns:
            Updated Job or None if the transition was fenced off.
        """
        now = _now()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.state == JobState.ACTIVE,
                    Job.lease_owner == worker_id,
                    Job.lease_token == lease_token,
                    Job.attempts_made == expected_attempts,
                )
            )
            .values(
                state=JobState.DELAYED,
                attempts_made=Job.attempts_made + 1,
                available_at=now + timedelta(milliseconds=delay_ms),
                failed_reason=reason,
                updated_at=now,
                lease_owner=None,
                lease_token=None,
                lease_expires_at=None,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Job queued for retry",
                extra={"job_id": job_id, "attempts_made": job.attempts_made, "delay_ms": delay_ms}
            )

        return job

    async def fail_job(
        self,
        job_id: str,
        worker_id: str,
        lease_token: str,
        expected_attempts: int,
        reason: str,
    ) -> Job | None:
        """
        Count the final failed attempt and mark the job terminally failed.

        Returns:
            Updated Job or None if the transition was fenced off.
        """
        now = _now()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.state == JobState.ACTIVE,
                    Job.lease_owner == worker_id,
                    Job.lease_token == lease_token,
                    Job.attempts_made == expected_attempts,
                )
            )
            .values(
                state=JobState.FAILED,
                attempts_made=Job.attempts_made + 1,
                failed_reason=reason,
                finished_at=now,
                updated_at=now,
                lease_owner=None,
                lease_token=None,
                lease_expires_at=None,
            )
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.warning(
                f"Job failed terminally after {job.attempts_made} attempts",
                extra={"job_id": job_id, "error": reason}
            )

        return job

    async def recover_expired_leases(self) -> int:
        """
        Recover jobs with expired leases.

        This is called by the reaper to handle worker crashes.
        Active jobs with expired leases are returned to WAITING.

        Returns:
            Number of recovered jobs.
        """
        now = _now()

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.state == JobState.ACTIVE,
                    Job.lease_expires_at < now,
                )
            )
            .values(
                state=JobState.WAITING,
                lease_owner=None,
                lease_token=None,
                lease_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Recovered {count} jobs with expired leases")

        return count

    async def extend_lease(
        self,
        job_id: str,
        worker_id: str,
        lease_token: str,
        extension_seconds: int,
    ) -> bool:
        """
        Extend the lease on a job (heartbeat).

        Returns:
            True if lease was extended, False otherwise.
        """
        now = _now()

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.lease_owner == worker_id,
                    Job.lease_token == lease_token,
                    Job.state == JobState.ACTIVE,
                )
            )
            .values(
                lease_expires_at=now + timedelta(seconds=extension_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def get_queue_counts(self, queue: str) -> QueueCounts:
        """
        Get waiting/active/delayed counts for a queue.
        """
        stmt = (
            select(Job.state, func.count())
            .where(
                and_(
                    Job.queue == queue,
                    Job.state.in_([JobState.WAITING, JobState.ACTIVE, JobState.DELAYED]),
                )
            )
            .group_by(Job.state)
        )
        result = await self._session.execute(stmt)
        counts = {state: count for state, count in result.all()}
        return QueueCounts(
            waiting=counts.get(JobState.WAITING, 0),
            active=counts.get(JobState.ACTIVE, 0),
            delayed=counts.get(JobState.DELAYED, 0),
        )


class SideEffectRepository:
    """
    Key-value operations backing side-effect reservations.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def set_if_absent(
        self,
        key: str,
        value: SideEffectState,
        stale_after: timedelta | None = None,
    ) -> bool:
        """
        Atomically insert ``key`` if it does not exist.

        When ``stale_after`` is given, a row still RESERVED and untouched for
        longer than that is treated as absent and taken over.

        Returns:
            True if this call wrote the row.
        """
        now = _now()
        stmt = insert(SideEffect).values(key=key, value=value, updated_at=now)

        if stale_after:
            stmt = stmt.on_conflict_do_update(
                index_elements=[SideEffect.key],
                set_={"value": value, "updated_at": now},
                where=and_(
                    SideEffect.value == SideEffectState.RESERVED,
                    SideEffect.updated_at < now - stale_after,
                ),
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[SideEffect.key])

        stmt = stmt.returning(SideEffect.key, literal_column("(xmax = 0)").label("inserted"))

        result = await self._session.execute(stmt)
        row = result.first()
        if row is None:
            return False

        if not row.inserted:
            logger.warning(
                "Reclaimed stale side-effect reservation",
                extra={"key": key}
            )
        return True

    async def set(self, key: str, value: SideEffectState) -> None:
        """Write ``key`` unconditionally."""
        now = _now()
        stmt = insert(SideEffect).values(key=key, value=value, updated_at=now).on_conflict_do_update(
            index_elements=[SideEffect.key],
            set_={"value": value, "updated_at": now},
        )
        await self._session.execute(stmt)

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        await self._session.execute(delete(SideEffect).where(SideEffect.key == key))

    async def get(self, key: str) -> SideEffectState | None:
        stmt = select(SideEffect.value).where(SideEffect.key == key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class DeadLetterRepository:
    """
    Dead-letter store operations.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        original_job_id: str,
        job_type: str,
        queue: str,
        payload: dict[str, Any],
        failed_reason: str,
        attempts_made: int,
        failed_at: datetime,
    ) -> DeadLetter | None:
        """
        Insert a dead-letter record unless one exists for the job.

        Returns:
            The new record, or None if the job was already escalated.
        """
        stmt = insert(DeadLetter).values(
            original_job_id=original_job_id,
            job_type=job_type,
            queue=queue,
            payload=payload,
            failed_reason=failed_reason,
            attempts_made=attempts_made,
            failed_at=failed_at,
            replay_count=0,
        ).on_conflict_do_nothing(
            index_elements=[DeadLetter.original_job_id]
        ).returning(DeadLetter)

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, record_id: UUID) -> DeadLetter | None:
        stmt = select(DeadLetter).where(DeadLetter.id == record_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int) -> Sequence[DeadLetter]:
        """List the most recent records first."""
        stmt = (
            select(DeadLetter)
            .order_by(DeadLetter.failed_at.desc(), DeadLetter.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count(self) -> int:
        stmt = select(func.count()).select_from(DeadLetter)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def begin_replay(self, record_id: UUID) -> DeadLetter | None:
        """
        Bump the replay counter of a record.

        Returns:
            The updated record, or None if it does not exist.
        """
        stmt = (
            update(DeadLetter)
            .where(DeadLetter.id == record_id)
            .values(
                replay_count=DeadLetter.replay_count + 1,
                last_replayed_at=_now(),
            )
            .returning(DeadLetter)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def finish_replay(self, record_id: UUID, job_id: str) -> None:
        stmt = (
            update(DeadLetter)
            .where(DeadLetter.id == record_id)
            .values(last_replay_job_id=job_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
