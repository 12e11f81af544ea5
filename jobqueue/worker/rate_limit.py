"""
Token bucket rate limiting for queue dequeues.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from jobqueue.types.job import RateLimit


@dataclass
class TokenBucket:
    """
    Token bucket for rate limiting.

    A queue limited to ``max`` jobs per ``window_ms`` gets a bucket holding
    ``max`` tokens that refills at ``max`` tokens per window. Tokens are
    only consumed for jobs actually leased, so empty polls are free.
    """

    capacity: float
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def for_rate_limit(
        cls,
        rate_limit: RateLimit,
        clock: Callable[[], float] = time.monotonic,
    ) -> "TokenBucket":
        """Create a full bucket for a queue's rate limit."""
        return cls(
            capacity=rate_limit.max,
            tokens=rate_limit.max,
            refill_rate=rate_limit.max / rate_limit.window_seconds,
            last_refill=clock(),
            clock=clock,
        )

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: float = 1.0) -> bool:
        """
        Try to consume tokens from the bucket.

        Args:
            tokens: Number of tokens to consume.

        Returns:
            True if tokens were consumed, False if rate limited.
        """
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    @property
    def wait_time(self) -> float:
        """Time in seconds until at least 1 token is available."""
        self._refill()
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.refill_rate
