"""
Per-queue worker pool.

Pulls jobs from one queue within its concurrency and rate limits and runs
each on its own task:

    IDLE -> PULLING -> (slot available) -> executing[0..concurrency) -> PULLING
"""

import asyncio
import logging
from enum import StrEnum

from jobqueue.broker.base import JobBroker
from jobqueue.engine.processor import JobProcessor
from jobqueue.engine.retry import RetryCoordinator
from jobqueue.observability.logging import bind_context
from jobqueue.types.job import QueueConfig, QueuedJob
from jobqueue.worker.rate_limit import TokenBucket

logger = logging.getLogger(__name__)


class PoolState(StrEnum):
    IDLE = "idle"
    PULLING = "pulling"
    STOPPING = "stopping"
    STOPPED = "stopped"


class WorkerPool:
    """
    Bounded-concurrency, rate-limited execution loop for one queue.

    Features:
    - Semaphore gating concurrent executions at the queue's concurrency
    - Token bucket gating dequeues at the queue's rate limit
    - Heartbeat extending leases of in-flight jobs
    - Graceful stop: no new leases, in-flight jobs run to completion
    """

    def __init__(
        self,
        config: QueueConfig,
        broker: JobBroker,
        processor: JobProcessor,
        retry: RetryCoordinator,
        worker_id: str,
        lease_seconds: int = 30,
        poll_interval: float = 1.0,
        heartbeat_interval: float = 10.0,
        rate_limiter: TokenBucket | None = None,
    ):
        self.config = config
        self.worker_id = worker_id
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval

        self._broker = broker
        self._processor = processor
        self._retry = retry
        self._semaphore = asyncio.Semaphore(config.concurrency)
        self._rate_limiter = rate_limiter or TokenBucket.for_rate_limit(config.rate_limit)

        self.state = PoolState.IDLE
        self._running = False
        self._stop_event = asyncio.Event()
        # One entry per lease; the same job id can be leased twice after a reclaim
        self._current_jobs: dict[asyncio.Task, QueuedJob] = {}

    @property
    def active_count(self) -> int:
        """Number of jobs currently executing."""
        return len(self._current_jobs)

    async def run(self) -> None:
        """Pull and execute jobs until stop() is called, then drain."""
        log_extra = {"queue": self.config.name, "worker_id": self.worker_id}
        logger.info(
            "Worker pool starting",
            extra={**log_extra, "concurrency": self.config.concurrency}
        )

        self._running = not self._stop_event.is_set()
        self.state = PoolState.PULLING
        heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        try:
            while self._running:
                delay = self._rate_limiter.wait_time
                if delay > 0:
                    await self._sleep(delay)
                    continue

                await self._semaphore.acquire()
                if not self._running:
                    self._semaphore.release()
                    break

                try:
                    job = await self._broker.lease(
                        self.config.name,
                        self.worker_id,
                        lease_seconds=self.lease_seconds,
                    )
                except Exception as e:
                    self._semaphore.release()
                    logger.exception(f"Error leasing job: {e}", extra=log_extra)
                    await self._sleep(self.poll_interval)
                    continue

                if job is None:
                    self._semaphore.release()
                    await self._sleep(self.poll_interval)
                    continue

                self._rate_limiter.consume()
                task = asyncio.create_task(self._execute_job(job))
                self._current_jobs[task] = job
        finally:
            self.state = PoolState.STOPPING
            if self._current_jobs:
                logger.info(
                    f"Waiting for {len(self._current_jobs)} jobs to complete",
                    extra=log_extra
                )
                await asyncio.gather(*self._current_jobs, return_exceptions=True)

            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass

            self.state = PoolState.STOPPED
            logger.info("Worker pool stopped", extra=log_extra)

    async def stop(self) -> None:
        """Stop admitting new jobs. In-flight jobs keep running."""
        if self._stop_event.is_set():
            return
        logger.info("Worker pool stopping", extra={"queue": self.config.name})
        self._running = False
        self._stop_event.set()

    async def _execute_job(self, job: QueuedJob) -> None:
        """
        Run one job and settle it with the broker before freeing its slot.
        """
        bind_context(job_id=job.id, queue=self.config.name, worker_id=self.worker_id)

        try:
            outcome = await self._processor.process(job)

            if outcome.is_failure:
                await self._retry.handle_failure(
                    job,
                    self.worker_id,
                    outcome.reason or "Unknown error",
                    terminal=outcome.terminal,
                )
            else:
                acked = await self._broker.ack(job, self.worker_id)
                if not acked:
                    logger.warning(
                        "Ack rejected - lease may have expired",
                        extra={"job_id": job.id, "queue": self.config.name}
                    )
        except Exception as e:
            # The lease expires and the reaper makes the job deliverable again
            logger.exception(
                "Exception settling job",
                extra={"job_id": job.id, "queue": self.config.name, "error": str(e)}
            )
        finally:
            self._current_jobs.pop(asyncio.current_task(), None)
            self._semaphore.release()

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on in-flight jobs.

        This prevents jobs from being reclaimed by the reaper
        while they're still being executed.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for job in list(self._current_jobs.values()):
                    extended = await self._broker.extend_lease(
                        job,
                        self.worker_id,
                        lease_seconds=self.lease_seconds,
                    )
                    if not extended:
                        logger.warning("Could not extend lease", extra={"job_id": job.id})

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when the pool is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
