"""
Worker process for executing jobs.

Runs one pool per registered queue, each pulling within its queue's
concurrency and rate limit, plus the queue metrics sampler.
"""

import asyncio
import logging
import os
import signal

from prometheus_client import start_http_server

from jobqueue.config import get_settings
from jobqueue.db import close_db, init_db
from jobqueue.engine.container import Engine
from jobqueue.observability.collector import MetricsCollector
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobqueue.worker.pool import WorkerPool

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker hosting one pool per queue.

    Features:
    - Atomic lease acquisition using FOR UPDATE SKIP LOCKED
    - Per-queue concurrency and rate limits
    - Heartbeat to extend leases for long-running jobs
    - Graceful shutdown on SIGTERM/SIGINT
    - Retry and DLQ handling
    """

    def __init__(
        self,
        engine: Engine,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        collector: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            engine: The wired engine components.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_interval: Seconds between polls when a queue is empty.
            collector: Metrics sampler. Defaults to one over the engine's queues.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.engine = engine
        self.pools = [
            WorkerPool(
                config,
                engine.broker,
                engine.processor,
                engine.retry,
                self.worker_id,
                lease_seconds=settings.worker_lease_duration_seconds,
                poll_interval=poll_interval or settings.worker_poll_interval_seconds,
                heartbeat_interval=settings.worker_heartbeat_interval_seconds,
            )
            for config in engine.registry.queues
        ]
        self.collector = collector or MetricsCollector(
            engine.registry,
            engine.broker,
            engine.dead_letters,
            metrics=engine.metrics,
        )
        self._stopping = False

    async def start(self) -> None:
        """Run all pools until stop() is called."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queues": [pool.config.name for pool in self.pools],
            }
        )

        collector_task = asyncio.create_task(self.collector.start())
        try:
            await asyncio.gather(*(pool.run() for pool in self.pools))
        finally:
            await self.collector.stop()
            await collector_task

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully. Further calls are no-ops."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        for pool in self.pools:
            await pool.stop()


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging("worker")
    setup_tracing()

    engine = await init_db()
    instrument_sqlalchemy(engine)
    start_http_server(settings.prometheus_port)

    worker = Worker(Engine.from_settings(settings))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
