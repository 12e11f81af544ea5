"""
Broker module.
Contains the capability interfaces and their PostgreSQL implementations.
"""

from jobqueue.broker.base import DeadLetterStore, JobBroker, KeyValueStore
from jobqueue.broker.postgres import (
    PostgresDeadLetterStore,
    PostgresJobBroker,
    PostgresKeyValueStore,
)

__all__ = [
    "JobBroker",
    "KeyValueStore",
    "DeadLetterStore",
    "PostgresJobBroker",
    "PostgresKeyValueStore",
    "PostgresDeadLetterStore",
]
