"""
Lease reaper for recovering expired job leases.

The reaper runs periodically to find jobs with expired leases
and returns them to the queue. This handles worker crashes and
ensures at-least-once delivery.
"""

import asyncio
import logging
import signal

from jobqueue.broker.base import JobBroker
from jobqueue.config import get_settings
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import Metrics, get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.

    Runs periodically to:
    1. Find ACTIVE jobs whose lease_expires_at has passed
    2. Return them to WAITING for redelivery
    3. Record metrics for monitoring

    A redelivered job whose side effect already ran is completed as a
    no-op by the processor, so reclaiming never duplicates an effect.
    """

    def __init__(
        self,
        broker: JobBroker,
        interval_seconds: int | None = None,
        metrics: Metrics | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            broker: Broker holding the leases.
            interval_seconds: Seconds between reaper runs.
            metrics: Metrics instance. Defaults to the process-wide one.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._broker = broker
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                recovered = await self.run_once()

                if recovered > 0:
                    logger.info(f"Recovered {recovered} expired leases")

            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> int:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Number of jobs recovered.
        """
        count = await self._broker.recover_expired_leases()
        if count > 0:
            self._metrics.record_lease_expired(count)
        return count


async def run_async() -> None:
    """Run the reaper asynchronously."""
    from jobqueue.broker.postgres import PostgresJobBroker

    setup_logging("reaper")
    await init_db()

    reaper = Reaper(PostgresJobBroker())

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
