"""Token-bucket rate limiter for inference calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from gabble_bot.config import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket shared by every inference call.

    The bucket starts full. Each acquire attempt first credits the time
    elapsed since the previous attempt, then takes one token if at least one
    is available; otherwise it sleeps for the poll interval and tries again.
    There is no timeout and no fairness between waiters.
    """

    def __init__(
        self,
        capacity: float = 10.0,
        refill_rate_per_second: float = 0.25,
        poll_interval_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the rate limiter.

        Args:
            capacity: Maximum burst size
            refill_rate_per_second: Tokens credited per elapsed second
            poll_interval_seconds: Sleep between attempts while the bucket is empty
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait between attempts
        """
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        if refill_rate_per_second < 0:
            raise ValueError("refill_rate_per_second must not be negative")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate_per_second)
        self._poll_interval = poll_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = self._capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "RateLimiter":
        """Build a limiter from the rate_limit config section."""
        return cls(
            capacity=config.capacity,
            refill_rate_per_second=config.refill_rate_per_second,
            poll_interval_seconds=config.poll_interval_seconds,
        )

    @property
    def tokens(self) -> float:
        """Tokens available as of the last attempt."""
        return self._tokens

    @property
    def capacity(self) -> float:
        """Bucket size, and the number of tokens a fresh limiter starts with."""
        return self._capacity

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        waited = False
        start = self._clock()
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    if waited:
                        logger.debug(
                            f"RATE_LIMIT: acquired after {self._clock() - start:.2f}s "
                            f"(tokens left: {self._tokens:.2f})"
                        )
                    return
            if not waited:
                logger.debug(f"RATE_LIMIT: bucket empty (tokens: {self._tokens:.2f}), waiting")
                waited = True
            await self._sleep(self._poll_interval)
