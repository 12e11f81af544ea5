"""
In-memory implementations of the broker, key-value and dead-letter
capabilities for engine tests.

Each operation yields to the event loop before taking effect so that
concurrent callers actually interleave.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from jobqueue.constants import JobState, SideEffectState
from jobqueue.types.job import (
    BackoffPolicy,
    DeadLetterRecord,
    EnqueueResult,
    JobContext,
    QueueCounts,
    QueuedJob,
)
from jobqueue.worker.handlers import EffectRegistry


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBroker:
    """Broker with the same owner, token and attempt fencing as the jobs table."""

    def __init__(self) -> None:
        self.jobs: dict[str, QueuedJob] = {}
        self.available_at: dict[str, datetime] = {}
        self.enqueue_error: Exception | None = None
        self.acked: list[str] = []
        self._lock = asyncio.Lock()

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
        await asyncio.sleep(0)
        if self.enqueue_error is not None:
            raise self.enqueue_error
        async with self._lock:
            if job_id in self.jobs:
                return EnqueueResult(job_id=job_id, created=False)
            self.jobs[job_id] = QueuedJob(
                id=job_id,
                type=job_type,
                queue=queue,
                payload=dict(payload),
                max_attempts=max_attempts,
                backoff=backoff,
                created_at=_now(),
            )
            self.available_at[job_id] = _now()
            return EnqueueResult(job_id=job_id, created=True)

    async def lease(self, queue: str, worker_id: str, *, lease_seconds: int) -> QueuedJob | None:
        await asyncio.sleep(0)
        async with self._lock:
            now = _now()
            candidates = [
                job for job in self.jobs.values()
                if job.queue == queue
                and job.state in (JobState.WAITING, JobState.DELAYED)
                and self.available_at[job.id] <= now
            ]
            if not candidates:
                return None
            job = min(candidates, key=lambda j: self.available_at[j.id])
            job.state = JobState.ACTIVE
            job.lease_owner = worker_id
            job.lease_token = uuid4().hex
            job.lease_expires_at = now + timedelta(seconds=lease_seconds)
            job.processed_at = now
            return replace(job)

    def _held(self, leased: QueuedJob, worker_id: str, expected_attempts: int | None = None) -> QueuedJob | None:
        job = self.jobs.get(leased.id)
        if job is None or job.state != JobState.ACTIVE or job.lease_owner != worker_id:
            return None
        if job.lease_token != leased.lease_token:
            return None
        if expected_attempts is not None and job.attempts_made != expected_attempts:
            return None
        return job

    async def ack(self, job: QueuedJob, worker_id: str) -> bool:
        await asyncio.sleep(0)
        async with self._lock:
            held = self._held(job, worker_id)
            if held is None:
                return False
            held.state = JobState.COMPLETED
            held.finished_at = _now()
            held.lease_owner = None
            held.lease_token = None
            held.lease_expires_at = None
            self.acked.append(job.id)
            return True

    async def retry_later(
        self,
        job: QueuedJob,
        worker_id: str,
        reason: str,
        delay_ms: int,
    ) -> QueuedJob | None:
        await asyncio.sleep(0)
        async with self._lock:
            held = self._held(job, worker_id, job.attempts_made)
            if held is None:
                return None
            held.state = JobState.DELAYED
            held.attempts_made += 1
            held.failed_reason = reason
            held.lease_owner = None
            held.lease_token = None
            held.lease_expires_at = None
            self.available_at[job.id] = _now() + timedelta(milliseconds=delay_ms)
            return replace(held)

    async def fail(self, job: QueuedJob, worker_id: str, reason: str) -> QueuedJob | None:
        await asyncio.sleep(0)
        async with self._lock:
            held = self._held(job, worker_id, job.attempts_made)
            if held is None:
                return None
            held.state = JobState.FAILED
            held.attempts_made += 1
            held.failed_reason = reason
            held.finished_at = _now()
            held.lease_owner = None
            held.lease_token = None
            held.lease_expires_at = None
            return replace(held)

    async def extend_lease(self, job: QueuedJob, worker_id: str, *, lease_seconds: int) -> bool:
        async with self._lock:
            held = self._held(job, worker_id)
            if held is None:
                return False
            held.lease_expires_at = _now() + timedelta(seconds=lease_seconds)
            return True

    async def recover_expired_leases(self) -> int:
        async with self._lock:
            now = _now()
            count = 0
            for job in self.jobs.values():
                if job.state == JobState.ACTIVE and job.lease_expires_at and job.lease_expires_at < now:
                    job.state = JobState.WAITING
                    job.lease_owner = None
                    job.lease_token = None
                    job.lease_expires_at = None
                    count += 1
            return count

    async def get_job(self, job_id: str) -> QueuedJob | None:
        job = self.jobs.get(job_id)
        return replace(job) if job else None

    async def counts(self, queue: str) -> QueueCounts:
        states = [job.state for job in self.jobs.values() if job.queue == queue]
        return QueueCounts(
            waiting=states.count(JobState.WAITING),
            active=states.count(JobState.ACTIVE),
            delayed=states.count(JobState.DELAYED),
        )

    def expire_lease(self, job_id: str) -> None:
        """Make the lease on ``job_id`` look expired."""
        self.jobs[job_id].lease_expires_at = _now() - timedelta(seconds=1)


class InMemoryKeyValueStore:
    """Key-value store with an atomic set-if-absent."""

    def __init__(self) -> None:
        self.data: dict[str, SideEffectState] = {}
        self.error: Exception | None = None
        self._lock = asyncio.Lock()

    async def set_if_absent(self, key: str, value: SideEffectState) -> bool:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        async with self._lock:
            if key in self.data:
                return False
            self.data[key] = value
            return True

    async def set(self, key: str, value: SideEffectState) -> None:
        await asyncio.sleep(0)
        self.data[key] = value

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        self.data.pop(key, None)


class InMemoryDeadLetterStore:
    """Dead-letter store keyed by record id, unique on original job id."""

    def __init__(self) -> None:
        self.records: dict[UUID, DeadLetterRecord] = {}
        self.error: Exception | None = None
        self._lock = asyncio.Lock()

    async def add(self, job: QueuedJob, reason: str, failed_at: datetime) -> DeadLetterRecord | None:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        async with self._lock:
            if any(r.original_job_id == job.id for r in self.records.values()):
                return None
            record = DeadLetterRecord(
                id=uuid4(),
                original_job_id=job.id,
                job_type=job.type,
                queue=job.queue,
                payload=dict(job.payload),
                failed_reason=reason,
                attempts_made=job.attempts_made,
                failed_at=failed_at,
            )
            self.records[record.id] = record
            return replace(record)

    async def get(self, record_id: UUID) -> DeadLetterRecord | None:
        record = self.records.get(record_id)
        return replace(record) if record else None

    async def list_recent(self, limit: int) -> list[DeadLetterRecord]:
        records = sorted(self.records.values(), key=lambda r: r.failed_at, reverse=True)
        return [replace(r) for r in records[:limit]]

    async def count(self) -> int:
        return len(self.records)

    async def begin_replay(self, record_id: UUID) -> DeadLetterRecord | None:
        async with self._lock:
            record = self.records.get(record_id)
            if record is None:
                return None
            record.replay_count += 1
            record.last_replayed_at = _now()
            return replace(record)

    async def finish_replay(self, record_id: UUID, job_id: str) -> None:
        record = self.records.get(record_id)
        if record is not None:
            record.last_replay_job_id = job_id


class RecordingEffects:
    """
    Effect registry whose handlers record each call.

    ``failures`` maps a job type to the exception its handler raises.
    """

    def __init__(self, job_types: list[str], delay: float = 0.0) -> None:
        self.calls: list[JobContext] = []
        self.failures: dict[str, Exception] = {}
        self.delay = delay
        self.registry = EffectRegistry()
        for job_type in job_types:
            self.registry.register(job_type)(self._handle)

    async def _handle(self, context: JobContext) -> None:
        await asyncio.sleep(self.delay)
        error = self.failures.get(context.job_type)
        if error is not None:
            raise error
        self.calls.append(context)

    def calls_for(self, job_id: str) -> list[JobContext]:
        return [c for c in self.calls if c.job_id == job_id]


def sample_value(metrics: Any, name: str, labels: dict[str, str] | None = None) -> float:
    """Read a sample from a Metrics instance's private registry (0.0 if absent)."""
    value = metrics._registry.get_sample_value(name, labels or {})
    return value or 0.0
