"""
Rate limiting implementations.

Provides a token bucket and an async rate limiter that can wait for it.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Awaitable, Callable, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""
    units_per_window: float = 60
    window_ms: float = 60000
    max_wait_ms: float = 60000
    auto_wait: bool = True

    def __post_init__(self):
        if self.units_per_window <= 0:
            raise ConfigurationError("units_per_window must be positive")
        if self.window_ms <= 0:
            raise ConfigurationError("window_ms must be positive")
        if self.max_wait_ms < 0:
            raise ConfigurationError("max_wait_ms must not be negative")

    def to_dict(self) -> dict:
        return {
            "units_per_window": self.units_per_window,
            "window_ms": self.window_ms,
            "max_wait_ms": self.max_wait_ms,
            "auto_wait": self.auto_wait,
        }


class TokenBucket:
    """
    Token bucket.

    Allows bursting up to bucket capacity, refills at a steady rate so that
    an empty bucket is full again after `refill_window_ms`.
    """

    def __init__(
        self,
        capacity: float,
        refill_window_ms: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.capacity = capacity
        self.refill_window_ms = refill_window_ms
        self.refill_rate_per_ms = capacity / refill_window_ms
        self._clock = clock
        self.tokens = float(capacity)
        self.last_refill = self._now_ms()
        self._lock = Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self._now_ms()
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(
                self.capacity,
                self.tokens + elapsed * self.refill_rate_per_ms,
            )
            self.last_refill = now

    def try_take(self, count: float = 1) -> bool:
        """
        Try to take tokens from the bucket.

        Args:
            count: Number of tokens to take

        Returns:
            True if tokens were taken, False if not enough were available
        """
        with self._lock:
            self._refill()

            if self.tokens >= count:
                self.tokens -= count
                return True
            return False

    def time_until_available_ms(self, count: float = 1) -> int:
        """
        Get milliseconds until `count` tokens are available.

        Rounded up so that waiting this long is always sufficient.
        """
        with self._lock:
            self._refill()

            if self.tokens >= count:
                return 0

            needed = count - self.tokens
            return math.ceil(needed / self.refill_rate_per_ms)

    def current_level(self) -> float:
        with self._lock:
            self._refill()
            return self.tokens

    def reset(self) -> None:
        with self._lock:
            self.tokens = float(self.capacity)
            self.last_refill = self._now_ms()


class RateLimiter:
    """
    Gate for outgoing requests backed by a single token bucket.

    When no token is available the caller is either denied straight away or,
    with auto_wait, suspended until the bucket should have refilled. The
    post-wait attempt is made exactly once; a concurrent consumer may win the
    race, in which case the acquire is denied.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RateLimitConfig()
        self.bucket = TokenBucket(
            capacity=self.config.units_per_window,
            refill_window_ms=self.config.window_ms,
            clock=clock,
        )
        self._sleep = sleep

    async def acquire(self, weight: float = 1) -> bool:
        """
        Acquire permission for one request.

        Args:
            weight: Number of units the request consumes

        Returns:
            True if granted, False if denied
        """
        if self.bucket.try_take(weight):
            return True

        if not self.config.auto_wait:
            logger.warning("Rate limit denied: no tokens available and auto_wait disabled")
            return False

        wait_ms = self.bucket.time_until_available_ms(weight)
        if wait_ms > self.config.max_wait_ms:
            logger.warning(
                "Rate limit wait of %d ms exceeds max_wait_ms=%s",
                wait_ms, self.config.max_wait_ms,
            )
            return False

        logger.debug("Waiting %d ms for %s rate limit token(s)", wait_ms, weight)
        await self._sleep(wait_ms / 1000)

        granted = self.bucket.try_take(weight)
        if not granted:
            logger.warning("Rate limit denied: token taken by another consumer during wait")
        return granted

    def get_wait_time_ms(self, weight: float = 1) -> int:
        return self.bucket.time_until_available_ms(weight)

    @property
    def available_tokens(self) -> float:
        return self.bucket.current_level()

    def reset(self) -> None:
        self.bucket.reset()
