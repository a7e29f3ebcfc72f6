"""
Exponential backoff schedule for queue redeliveries.

The delay is keyed directly off the queue's delivery counter, so the
budget is consumed one unit per delivery:

    delay(n) = ceil(min_backoff_ms * 2^n / 1000) seconds, for n <= max_retries

where ``max_retries = floor(log2(max_backoff_ms / min_backoff_ms))``. With
the defaults (285 ms, 7 days) this gives 21 retries and a last delay of
597689 seconds, just under the 604800 second ceiling.
"""

import math
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.queues.config import RetryConfig

# Any delay must stay below 7 days, the longest message TTL most
# queue services accept.
DEFAULT_MAX_BACKOFF_MS = 7 * 24 * 3600 * 1000
DEFAULT_MIN_BACKOFF_MS = 285


def derive_max_retries(
    min_backoff_ms: int = DEFAULT_MIN_BACKOFF_MS,
    max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS,
) -> int:
    """Largest n such that min_backoff_ms * 2^n <= max_backoff_ms."""
    return math.floor(math.log2(max_backoff_ms / min_backoff_ms))


MAX_RETRIES = derive_max_retries()


def compute_delay(
    delivery_count: int,
    max_retries: int = MAX_RETRIES,
    min_backoff_ms: int = DEFAULT_MIN_BACKOFF_MS,
) -> int | None:
    """
    Compute the number of seconds before a message should be delivered again.

    Args:
        delivery_count: 1-based delivery attempt reported by the queue
        max_retries: Highest delivery count that still gets a delay
        min_backoff_ms: Smallest unit of delay in milliseconds

    Returns:
        Delay in whole seconds (rounded up), or None once the retry
        budget is exhausted.
    """
    if delivery_count > max_retries:
        return None
    return math.ceil(min_backoff_ms * (2 ** delivery_count) / 1000)


class DelayPolicy:
    """
    Backoff schedule with bounds fixed at construction.

    Usage:
        policy = DelayPolicy(min_backoff_ms=285, max_backoff_ms=604_800_000)
        policy.max_retries        # 21
        policy.delay_for(1)       # 1
        policy.delay_for(22)      # None (exhausted)
    """

    def __init__(
        self,
        min_backoff_ms: int = DEFAULT_MIN_BACKOFF_MS,
        max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS,
    ):
        if min_backoff_ms <= 0:
            raise ValueError("min_backoff_ms must be positive")
        if max_backoff_ms < min_backoff_ms:
            raise ValueError("max_backoff_ms must be >= min_backoff_ms")
        self._min_backoff_ms = min_backoff_ms
        self._max_backoff_ms = max_backoff_ms
        self._max_retries = derive_max_retries(min_backoff_ms, max_backoff_ms)

    @classmethod
    def from_config(cls, config: "RetryConfig") -> "DelayPolicy":
        """Build a policy from a RetryConfig."""
        return cls(
            min_backoff_ms=config.min_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
        )

    @property
    def min_backoff_ms(self) -> int:
        return self._min_backoff_ms

    @property
    def max_backoff_ms(self) -> int:
        return self._max_backoff_ms

    @property
    def max_retries(self) -> int:
        """Derived retry budget."""
        return self._max_retries

    def delay_for(self, delivery_count: int) -> int | None:
        """Delay in seconds for this delivery, or None when exhausted."""
        return compute_delay(
            delivery_count,
            max_retries=self._max_retries,
            min_backoff_ms=self._min_backoff_ms,
        )

    def is_exhausted(self, delivery_count: int) -> bool:
        return delivery_count > self._max_retries


class ReconnectBackoff:
    """
    Jittered exponential delay for a worker's own reconnect loop.

    Unrelated to message redelivery: this paces restarts after the worker
    loses its queue connection. Call reset() once the loop runs cleanly.

    Usage:
        backoff = ReconnectBackoff(base_delay=1.0, max_delay=60.0)
        while running:
            try:
                await run()
                backoff.reset()
            except Exception:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter_range: float = 0.5,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_range = jitter_range
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Consecutive failures since the last reset."""
        return self._attempt

    def next_delay(self) -> float:
        """Return the next delay in seconds and count the attempt."""
        delay = min(self.base_delay * (2 ** self._attempt), self.max_delay)
        delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._attempt += 1
        return max(0.0, delay)

    def reset(self) -> None:
        self._attempt = 0
