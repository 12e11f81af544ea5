"""
Idempotent Job Queue

Accepts asynchronous jobs over HTTP, queues them durably, and executes them with
deduplicated identities, at-most-once side effects, retry with backoff, and
dead-letter escalation with replay.
"""

__version__ = "1.0.0"
