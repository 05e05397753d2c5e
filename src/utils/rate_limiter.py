"""
Request Rate Limiters

Two throttling strategies used by the engine's outbound calls:

TokenBucketRateLimiter
======================
Smooth rate limiting with burst capacity, used for the market-data feed.
- Bucket capacity: Maximum burst size (tokens)
- Refill rate: Tokens added per second
- Token cost: Number of tokens consumed per request

Example (5 req/sec, burst 10):
- Can send 10 requests instantly (burst)
- Then throttles to 5 req/sec sustained

MinuteWindowRateLimiter
=======================
Fixed-window limiter for paid inference endpoints that quote their quota as
"N requests per minute". Once the window's quota is spent the caller sleeps
until the window resets, then a fresh window starts.
"""

import time
import asyncio
from typing import Callable, Final, Optional, Dict, Any

from utils.logger import get_logger


logger = get_logger(__name__)


class TokenBucketRateLimiter:
    """
    Token Bucket Rate Limiter with asynchronous support.

    Attributes:
        rate: Tokens per second (sustained rate)
        capacity: Maximum burst capacity (tokens)
        tokens: Current token count
        last_update: Last refill timestamp
    """

    def __init__(self, rate: float, capacity: float, clock: Optional[Callable[[], float]] = None):
        """
        Initialize token bucket rate limiter.

        Args:
            rate: Tokens per second (sustained rate, e.g., 5.0 = 5 req/sec)
            capacity: Maximum burst capacity (e.g., 10.0 = 10 req burst)
            clock: Monotonic clock (injectable for tests)
        """
        self._clock = clock or time.monotonic
        self.rate: Final[float] = rate
        self.capacity: Final[float] = capacity
        self.tokens: float = capacity  # Start with full bucket
        self.last_update: float = self._clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        """Add rate x elapsed tokens, capped at bucket capacity."""
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(self.capacity, self.tokens + (self.rate * elapsed))
        self.last_update = now

    async def acquire(self, cost: float = 1.0) -> None:
        """
        Acquire tokens, sleeping until the bucket holds enough.

        Args:
            cost: Number of tokens to consume (default: 1.0)
        """
        async with self._lock:
            while True:
                self._refill()

                if self.tokens >= cost:
                    self.tokens -= cost
                    return

                deficit = cost - self.tokens
                await asyncio.sleep(deficit / self.rate)


class MinuteWindowRateLimiter:
    """
    Fixed-window limiter: at most `max_requests` per `window_sec`.

    When the quota is exhausted `acquire()` sleeps for the remainder of the
    current window, then opens a new one. Concurrent callers queue on a lock so
    the quota is never overspent.
    """

    def __init__(
        self,
        max_requests: int,
        window_sec: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")

        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock or time.monotonic
        self._window_start = self._clock()
        self._count = 0
        self._total = 0
        self._throttled = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Reserve one request slot, sleeping until the window resets if needed."""
        async with self._lock:
            now = self._clock()
            if now - self._window_start >= self.window_sec:
                self._window_start = now
                self._count = 0

            if self._count >= self.max_requests:
                wait_time = max(0.0, self.window_sec - (now - self._window_start))
                self._throttled += 1
                logger.info(
                    f"⏳ Rate limit reached ({self.max_requests}/{self.window_sec:.0f}s), "
                    f"waiting {wait_time:.1f}s"
                )
                await asyncio.sleep(wait_time)
                self._window_start = self._clock()
                self._count = 0

            self._count += 1
            self._total += 1

    @property
    def requests_this_window(self) -> int:
        return self._count

    def get_stats(self) -> Dict[str, Any]:
        return {
            'requests_this_window': self._count,
            'max_requests': self.max_requests,
            'window_sec': self.window_sec,
            'total_requests': self._total,
            'times_throttled': self._throttled,
        }
