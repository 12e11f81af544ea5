"""
Capabilities the engine requires from its external collaborators.

The engine never keeps its own copy of attempt counts or reservation state;
it goes through these interfaces for every read and write.
"""

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from jobqueue.constants import SideEffectState
from jobqueue.types.job import (
    BackoffPolicy,
    DeadLetterRecord,
    EnqueueResult,
    QueueCounts,
    QueuedJob,
)


class JobBroker(Protocol):
    """
    Durable, at-least-once queue broker with id-based deduplication.

    Every lease carries a fresh ``lease_token``. ack, retry_later, fail and
    extend_lease only apply while the job still holds the token it was
    leased with, so a stale holder in the same worker is fenced off too.
    """

    async def enqueue(
        self,
        queue: str,
        job_id: str,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_attempts: int,
        backoff: BackoffPolicy,
    ) -> EnqueueResult: ...

    async def lease(self, queue: str, worker_id: str, *, lease_seconds: int) -> QueuedJob | None: ...

    async def ack(self, job: QueuedJob, worker_id: str) -> bool: ...

    async def retry_later(
        self,
        job: QueuedJob,
        worker_id: str,
        reason: str,
        delay_ms: int,
    ) -> QueuedJob | None: ...

    async def fail(self, job: QueuedJob, worker_id: str, reason: str) -> QueuedJob | None: ...

    async def extend_lease(self, job: QueuedJob, worker_id: str, *, lease_seconds: int) -> bool: ...

    async def recover_expired_leases(self) -> int: ...

    async def get_job(self, job_id: str) -> QueuedJob | None: ...

    async def counts(self, queue: str) -> QueueCounts: ...


class KeyValueStore(Protocol):
    """Atomic key-value store with compare-and-swap insert."""

    async def set_if_absent(self, key: str, value: SideEffectState) -> bool: ...

    async def set(self, key: str, value: SideEffectState) -> None: ...

    async def delete(self, key: str) -> None: ...


class DeadLetterStore(Protocol):
    """Durable store of terminally failed jobs."""

    async def add(self, job: QueuedJob, reason: str, failed_at: datetime) -> DeadLetterRecord | None: ...

    async def get(self, record_id: UUID) -> DeadLetterRecord | None: ...

    async def list_recent(self, limit: int) -> list[DeadLetterRecord]: ...

    async def count(self) -> int: ...

    async def begin_replay(self, record_id: UUID) -> DeadLetterRecord | None: ...

    async def finish_replay(self, record_id: UUID, job_id: str) -> None: ...
