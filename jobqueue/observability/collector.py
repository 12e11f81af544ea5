"""
Periodic sampling of queue depth and dead-letter size into Prometheus gauges.
"""

import asyncio
import logging

from jobqueue.broker.base import DeadLetterStore, JobBroker
from jobqueue.config import get_settings
from jobqueue.engine.registry import QueueRegistry
from jobqueue.observability.metrics import Metrics, get_metrics

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Samples broker counts for every registered queue and the dead-letter
    store size on a fixed interval.

    A failing sample is logged and the loop keeps running.
    """

    def __init__(
        self,
        registry: QueueRegistry,
        broker: JobBroker,
        dead_letters: DeadLetterStore,
        metrics: Metrics | None = None,
        interval_seconds: float | None = None,
    ):
        settings = get_settings()
        self.interval = interval_seconds or settings.metrics_interval_seconds
        self._registry = registry
        self._broker = broker
        self._dead_letters = dead_letters
        self._metrics = metrics or get_metrics()
        self._running = False
        self._stop_event = asyncio.Event()

    async def collect_once(self) -> None:
        """Take one sample of every gauge."""
        for config in self._registry.queues:
            counts = await self._broker.counts(config.name)
            self._metrics.update_queue_counts(config.name, counts)

        self._metrics.update_dead_letter_size(await self._dead_letters.count())

    async def start(self) -> None:
        """Sample until stop() is called."""
        logger.info(f"Metrics collector starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.collect_once()
            except Exception as e:
                logger.exception(f"Error collecting metrics: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Metrics collector stopped")

    async def stop(self) -> None:
        self._running = False
        self._stop_event.set()
