"""
Job lifecycle engine.
Contains identity derivation, routing, side-effect fencing, processing,
retry and dead-letter handling.
"""

from jobqueue.engine.container import Engine
from jobqueue.engine.dead_letter import DeadLetterEscalator
from jobqueue.engine.guard import SideEffectGuard
from jobqueue.engine.idempotency import IdempotencyResolver
from jobqueue.engine.processor import JobProcessor
from jobqueue.engine.registry import QueueRegistry, QueueRouter, default_registry
from jobqueue.engine.retry import RetryCoordinator, RetryDecision

__all__ = [
    "Engine",
    "IdempotencyResolver",
    "QueueRegistry",
    "QueueRouter",
    "default_registry",
    "SideEffectGuard",
    "JobProcessor",
    "RetryCoordinator",
    "RetryDecision",
    "DeadLetterEscalator",
]
