"""
Wiring of the engine components around a broker and stores.
"""

from dataclasses import dataclass

from jobqueue.broker.base import DeadLetterStore, JobBroker, KeyValueStore
from jobqueue.config import Settings, get_settings
from jobqueue.engine.dead_letter import DeadLetterEscalator
from jobqueue.engine.guard import SideEffectGuard
from jobqueue.engine.idempotency import IdempotencyResolver
from jobqueue.engine.processor import JobProcessor
from jobqueue.engine.registry import QueueRegistry, QueueRouter, default_registry
from jobqueue.engine.retry import RetryCoordinator
from jobqueue.observability.metrics import Metrics, get_metrics
from jobqueue.worker.handlers import EffectRegistry


@dataclass
class Engine:
    """All engine components sharing one registry, broker and set of stores."""

    registry: QueueRegistry
    broker: JobBroker
    store: KeyValueStore
    dead_letters: DeadLetterStore
    metrics: Metrics
    router: QueueRouter
    guard: SideEffectGuard
    processor: JobProcessor
    escalator: DeadLetterEscalator
    retry: RetryCoordinator

    @classmethod
    def build(
        cls,
        registry: QueueRegistry,
        broker: JobBroker,
        store: KeyValueStore,
        dead_letters: DeadLetterStore,
        effects: EffectRegistry,
        metrics: Metrics | None = None,
    ) -> "Engine":
        metrics = metrics or get_metrics()
        resolver = IdempotencyResolver()
        router = QueueRouter(registry, broker, resolver=resolver, metrics=metrics)
        guard = SideEffectGuard(store)
        escalator = DeadLetterEscalator(dead_letters, router, metrics=metrics, resolver=resolver)
        return cls(
            registry=registry,
            broker=broker,
            store=store,
            dead_letters=dead_letters,
            metrics=metrics,
            router=router,
            guard=guard,
            processor=JobProcessor(guard, effects, metrics=metrics),
            escalator=escalator,
            retry=RetryCoordinator(broker, escalator),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Engine":
        """
        Build the production engine on PostgreSQL.
        Requires init_db() to have run.
        """
        from jobqueue.broker.postgres import (
            PostgresDeadLetterStore,
            PostgresJobBroker,
            PostgresKeyValueStore,
        )
        from jobqueue.worker.handlers import effects

        settings = settings or get_settings()
        return cls.build(
            registry=default_registry(),
            broker=PostgresJobBroker(),
            store=PostgresKeyValueStore(
                stale_after_seconds=settings.side_effect_reservation_ttl_seconds,
            ),
            dead_letters=PostgresDeadLetterStore(),
            effects=effects,
        )
