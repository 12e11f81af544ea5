"""
Unit tests for the per-queue worker pool.
"""

import asyncio

import pytest

from jobqueue.constants import (
    JOB_TYPE_GENERATE_REPORT,
    JOB_TYPE_WELCOME_EMAIL,
    QUEUE_EMAIL,
    QUEUE_REPORT,
    JobState,
)
from jobqueue.engine.processor import JobProcessor
from jobqueue.engine.guard import SideEffectGuard
from jobqueue.types.job import JobContext, RateLimit
from jobqueue.worker.handlers import EffectRegistry
from jobqueue.worker.pool import PoolState, WorkerPool
from jobqueue.worker.rate_limit import TokenBucket


def make_pool(engine, queue: str, processor=None, **kwargs) -> WorkerPool:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("heartbeat_interval", 0.05)
    return WorkerPool(
        engine.registry.queue(queue),
        engine.broker,
        processor or engine.processor,
        engine.retry,
        "worker-1",
        **kwargs,
    )


async def run_until(pool: WorkerPool, condition, timeout: float = 5.0) -> None:
    task = asyncio.create_task(pool.run())
    try:
        async with asyncio.timeout(timeout):
            while not condition():
                await asyncio.sleep(0.01)
    finally:
        await pool.stop()
        await task


class TestWorkerPool:
    """Tests for WorkerPool."""

    async def test_processes_jobs_and_acks(self, engine, broker, effects):
        ids = [
            (await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": f"u{i}@example.com"}, f"k{i}")).job_id
            for i in range(5)
        ]
        pool = make_pool(engine, QUEUE_EMAIL)

        await run_until(pool, lambda: len(broker.acked) == 5)

        assert sorted(broker.acked) == sorted(ids)
        assert all(broker.jobs[i].state == JobState.COMPLETED for i in ids)
        assert len(effects.calls) == 5
        assert pool.state == PoolState.STOPPED

    async def test_concurrency_never_exceeded(self, engine, broker, store, metrics):
        running = 0
        peak = 0
        effects = EffectRegistry()

        @effects.register(JOB_TYPE_GENERATE_REPORT)
        async def slow_report(context: JobContext) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        processor = JobProcessor(SideEffectGuard(store), effects, metrics=metrics)
        for i in range(8):
            await engine.router.enqueue(JOB_TYPE_GENERATE_REPORT, {"reportType": "daily"}, f"r{i}")
        pool = make_pool(engine, QUEUE_REPORT, processor=processor)

        await run_until(pool, lambda: len(broker.acked) == 8)

        assert peak == 2

    async def test_failure_goes_through_retry(self, engine, broker, dead_letters, effects):
        result = await engine.router.enqueue(
            JOB_TYPE_WELCOME_EMAIL,
            {"email": "a@example.com", "forceFail": True},
            "always-fails",
        )
        pool = make_pool(engine, QUEUE_EMAIL)

        await run_until(pool, lambda: len(dead_letters.records) == 1)

        job = broker.jobs[result.job_id]
        assert job.state == JobState.FAILED
        assert job.attempts_made == 3
        record = next(iter(dead_letters.records.values()))
        assert record.attempts_made == 3
        assert effects.calls == []

    async def test_rate_limit_counts_only_leased_jobs(self, engine, broker):
        limiter = TokenBucket.for_rate_limit(RateLimit(max=2, window_ms=60_000))
        for i in range(4):
            await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, f"k{i}")
        pool = make_pool(engine, QUEUE_EMAIL, rate_limiter=limiter)

        task = asyncio.create_task(pool.run())
        await asyncio.sleep(0.2)
        await pool.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(broker.acked) == 2

    async def test_empty_polls_do_not_use_rate(self, engine, broker):
        limiter = TokenBucket.for_rate_limit(RateLimit(max=1, window_ms=60_000))
        pool = make_pool(engine, QUEUE_EMAIL, rate_limiter=limiter)
        task = asyncio.create_task(pool.run())
        await asyncio.sleep(0.05)

        await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, "late")
        try:
            async with asyncio.timeout(2.0):
                while not broker.acked:
                    await asyncio.sleep(0.01)
        finally:
            await pool.stop()
            await task

        assert len(broker.acked) == 1

    async def test_stop_drains_in_flight_jobs(self, engine, broker, store, metrics):
        started = asyncio.Event()
        effects = EffectRegistry()

        @effects.register(JOB_TYPE_WELCOME_EMAIL)
        async def slow_email(context: JobContext) -> None:
            started.set()
            await asyncio.sleep(0.1)

        processor = JobProcessor(SideEffectGuard(store), effects, metrics=metrics)
        result = await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, "k")
        pool = make_pool(engine, QUEUE_EMAIL, processor=processor)

        task = asyncio.create_task(pool.run())
        await started.wait()
        await pool.stop()
        await pool.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert broker.acked == [result.job_id]
        assert pool.active_count == 0

    async def test_heartbeat_extends_lease(self, engine, broker, store, metrics):
        started = asyncio.Event()
        effects = EffectRegistry()

        @effects.register(JOB_TYPE_WELCOME_EMAIL)
        async def slow_email(context: JobContext) -> None:
            started.set()
            await asyncio.sleep(0.3)

        processor = JobProcessor(SideEffectGuard(store), effects, metrics=metrics)
        result = await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, "k")
        pool = make_pool(engine, QUEUE_EMAIL, processor=processor, lease_seconds=30)

        task = asyncio.create_task(pool.run())
        await started.wait()
        first_expiry = broker.jobs[result.job_id].lease_expires_at
        await asyncio.sleep(0.15)

        assert broker.jobs[result.job_id].lease_expires_at > first_expiry

        await pool.stop()
        await task

    async def test_reclaimed_job_keeps_first_execution_tracked(self, engine, broker, store, metrics):
        started = asyncio.Event()
        release = asyncio.Event()
        effects = EffectRegistry()

        @effects.register(JOB_TYPE_WELCOME_EMAIL)
        async def stuck_email(context: JobContext) -> None:
            started.set()
            await release.wait()

        processor = JobProcessor(SideEffectGuard(store), effects, metrics=metrics)
        result = await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, "k")
        pool = make_pool(engine, QUEUE_EMAIL, processor=processor, lease_seconds=0, heartbeat_interval=10.0)

        task = asyncio.create_task(pool.run())
        await started.wait()
        await asyncio.sleep(0.01)
        assert await broker.recover_expired_leases() == 1

        # The same worker leases the job again; the second delivery is a no-op
        async with asyncio.timeout(2.0):
            while not broker.acked:
                await asyncio.sleep(0.01)
        assert pool.active_count == 1

        await pool.stop()
        await asyncio.sleep(0.05)
        assert not task.done()

        release.set()
        await asyncio.wait_for(task, timeout=2.0)

        # The first execution's ack carries the old lease token and is rejected
        assert broker.acked == [result.job_id]
        assert broker.jobs[result.job_id].state == JobState.COMPLETED
        assert pool.active_count == 0

    async def test_lease_errors_do_not_stop_the_pool(self, engine, broker, monkeypatch):
        calls = 0
        original = broker.lease

        async def flaky_lease(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("broker down")
            return await original(*args, **kwargs)

        monkeypatch.setattr(broker, "lease", flaky_lease)
        await engine.router.enqueue(JOB_TYPE_WELCOME_EMAIL, {"email": "a@example.com"}, "k")
        pool = make_pool(engine, QUEUE_EMAIL)

        await run_until(pool, lambda: len(broker.acked) == 1)

        assert calls >= 2


@pytest.mark.parametrize("queue", [QUEUE_EMAIL, QUEUE_REPORT])
async def test_idle_pool_stops_promptly(engine, queue):
    pool = make_pool(engine, queue, poll_interval=10.0)
    task = asyncio.create_task(pool.run())
    await asyncio.sleep(0.02)

    await pool.stop()

    await asyncio.wait_for(task, timeout=1.0)
