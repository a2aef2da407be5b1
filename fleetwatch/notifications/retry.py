"""
Retry delay calculation for notification delivery.

Computes per-attempt delays for a channel's ``RetryPolicy``:

- fixed:       interval
- linear:      interval * attempt
- exponential: interval * multiplier^(attempt - 1)

capped at ``max_delay`` with optional jitter. Call reset() after a
successful send to zero the attempt counter.
"""

import random

from fleetwatch.monitoring.schemas import RetryPolicy


class RetryBackoff:
    """
    Delay generator for one delivery target.

    Usage:
        backoff = RetryBackoff(channel.retry_policy)
        for attempt in range(1, backoff.max_attempts + 1):
            if await try_send():
                break
            if attempt < backoff.max_attempts:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        policy: RetryPolicy,
        max_delay: float = 300.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.0,
    ):
        self.policy = policy
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Retries handed out so far."""
        return self._attempt

    @property
    def max_attempts(self) -> int:
        """First attempt plus retries."""
        return self.policy.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay before the ``retry``-th retry (1-based), without jitter."""
        interval = self.policy.retry_interval
        strategy = self.policy.backoff_strategy
        if strategy == "fixed":
            delay = interval
        elif strategy == "linear":
            delay = interval * retry
        else:
            delay = interval * (self.multiplier ** (retry - 1))
        return min(delay, self.max_delay)

    def next_delay(self) -> float:
        """Return the next delay, incrementing the attempt counter."""
        self._attempt += 1
        delay = self.delay_for(self._attempt)
        if self.jitter_range:
            jitter = delay * random.uniform(-self.jitter_range, self.jitter_range)
            delay = max(0.0, delay + jitter)
        return delay

    def reset(self) -> None:
        """Reset the attempt counter after a successful send."""
        self._attempt = 0
