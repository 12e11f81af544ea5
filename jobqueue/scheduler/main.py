"""
Periodic job producer.

Enqueues one heartbeat job per interval bucket. The idempotency key is
derived from the bucket, so any number of scheduler instances produce a
single job per bucket.
"""

import asyncio
import logging
import signal
import time
from collections.abc import Callable
from typing import Any

from jobqueue.config import get_settings
from jobqueue.constants import JOB_TYPE_WELCOME_EMAIL
from jobqueue.db import close_db, init_db
from jobqueue.engine.registry import QueueRouter
from jobqueue.observability.logging import setup_logging
from jobqueue.types.job import EnqueueResult

logger = logging.getLogger(__name__)

HEARTBEAT_PAYLOAD: dict[str, Any] = {
    "email": "cron@example.com",
    "name": "Scheduler",
    "message": "This job was triggered by the scheduler",
}


def heartbeat_key(bucket: int) -> str:
    return f"system:heartbeat:{bucket}"


class Scheduler:
    """
    Heartbeat producer running on a fixed interval.
    """

    def __init__(
        self,
        router: QueueRouter,
        interval_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.interval = interval_seconds or settings.scheduler_interval_seconds
        self._router = router
        self._clock = clock
        self._running = False
        self._stop_event = asyncio.Event()

    def current_bucket(self) -> int:
        """Index of the current interval since the epoch."""
        return int(self._clock() // self.interval)

    async def tick(self) -> EnqueueResult:
        """Enqueue the heartbeat job for the current bucket."""
        bucket = self.current_bucket()
        result = await self._router.enqueue(
            JOB_TYPE_WELCOME_EMAIL,
            dict(HEARTBEAT_PAYLOAD),
            heartbeat_key(bucket),
        )
        logger.info(
            "Scheduled job enqueued",
            extra={"bucket": bucket, "job_id": result.job_id, "created": result.created}
        )
        return result

    async def start(self) -> None:
        """Tick until stop() is called. A failed tick is logged and skipped."""
        logger.info(f"Scheduler starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

            if not self._running:
                break

            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Scheduler failed: {e}")

        logger.info("Scheduler stopped")

    async def stop(self) -> None:
        """Stop the scheduler."""
        logger.info("Scheduler stopping")
        self._running = False
        self._stop_event.set()


async def run_async() -> None:
    """Run the scheduler asynchronously."""
    from jobqueue.engine.container import Engine

    setup_logging("scheduler")
    await init_db()

    scheduler = Scheduler(Engine.from_settings().router)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(scheduler.stop())
        )

    try:
        await scheduler.start()
    finally:
        await close_db()


def run() -> None:
    """Run the scheduler."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
