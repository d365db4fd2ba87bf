"""Admission control for outbound Google Calendar API calls.

A token bucket refilled at ``qps`` permits per second with a ``burst``
capacity decides whether a call may go out. ``allow()`` answers immediately;
``wait()`` retries on an exponential backoff schedule until a permit is
available or the caller gives up.

Quota reference: https://developers.google.com/calendar/api/guides/quota
"""

import asyncio
import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from gcal_mcp.config import DEFAULT_BURST, DEFAULT_QPS
from gcal_mcp.errors import OperationCancelledError

logger = logging.getLogger(__name__)

INITIAL_INTERVAL = 0.1
MAX_INTERVAL = 10.0
MULTIPLIER = 2.0
RANDOMIZATION_FACTOR = 0.2


@dataclass
class BackoffSchedule:
    """Exponential backoff state.

    Attributes:
        next_interval: Base delay before the next retry, in seconds.
        multiplier: Growth factor applied after each retry.
        max_interval: Upper bound for the base delay.
        randomization_factor: Jitter fraction applied around the base delay.
    """

    next_interval: float = INITIAL_INTERVAL
    multiplier: float = MULTIPLIER
    max_interval: float = MAX_INTERVAL
    randomization_factor: float = RANDOMIZATION_FACTOR

    def next_delay(self) -> float:
        """Return the jittered delay for this retry and advance the schedule."""
        base = self.next_interval
        jitter = base * self.randomization_factor
        delay = random.uniform(base - jitter, base + jitter)  # nosec B311 - not crypto
        self.next_interval = min(base * self.multiplier, self.max_interval)
        return delay


class TokenBucket:
    """Time-based token bucket. Not thread-safe on its own."""

    def __init__(self, rate: float, capacity: int, clock: Callable[[], float]) -> None:
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._tokens = float(capacity)
        self._updated_at = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated_at = now

    def try_consume(self) -> bool:
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens


class RateLimiter:
    """Rate limiter for the Google Calendar API.

    Safe for concurrent use: the bucket and the backoff schedule are only
    touched while holding an internal lock, so a permit is never handed out
    twice.

    Attributes:
        qps: Refill rate in permits per second.
        burst: Bucket capacity (permits available immediately).

    Example:
        ```python
        limiter = RateLimiter(qps=1, burst=10)

        if not limiter.allow():
            raise RateLimitExceededError("list_calendars")

        # or block until a permit is available
        await limiter.wait(timeout=5.0)
        ```
    """

    def __init__(
        self,
        qps: float = DEFAULT_QPS,
        burst: int = DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the limiter with a full bucket.

        Args:
            qps: Permits added per second.
            burst: Maximum number of stored permits.
            clock: Monotonic time source in seconds.
        """
        if qps <= 0:
            raise ValueError("qps must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")

        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._bucket = TokenBucket(qps, burst, clock)
        self._backoff = BackoffSchedule()

    def allow(self) -> bool:
        """Consume one permit if available. Never blocks."""
        with self._lock:
            return self._bucket.try_consume()

    def reset(self) -> None:
        """Restore the backoff schedule to its initial interval.

        The bucket is left untouched: it models the shared upstream quota,
        which only refills with time.
        """
        with self._lock:
            self._backoff = BackoffSchedule()

    def _next_delay(self) -> float:
        with self._lock:
            return self._backoff.next_delay()

    async def wait(
        self,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Block until a permit is consumed.

        Args:
            cancel_event: When set, waiting stops with reason "cancelled".
            timeout: Seconds to wait before giving up with reason
                "deadline_exceeded". None waits indefinitely.

        Raises:
            OperationCancelledError: If cancelled or the deadline passed.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("rate_limit", OperationCancelledError.CANCELLED)

        if self.allow():
            return

        # Each blocking wait starts its backoff from the initial interval.
        self.reset()
        deadline = None if timeout is None else self._clock() + timeout
        cancel = cancel_event or asyncio.Event()

        while True:
            delay = self._next_delay()
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise OperationCancelledError(
                        "rate_limit", OperationCancelledError.DEADLINE_EXCEEDED
                    )
                delay = min(delay, remaining)

            logger.debug("Rate limit exhausted, retrying in %.3fs", delay)
            try:
                await asyncio.wait_for(cancel.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            else:
                raise OperationCancelledError("rate_limit", OperationCancelledError.CANCELLED)

            if self.allow():
                return
