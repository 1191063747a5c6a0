"""Tests for efrate.rate_limiter module."""

import logging

import pytest

from efrate.exceptions import ConfigurationError
from efrate.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    TokenBucket,
)


class TestRateLimitConfig:
    def test_defaults(self):
        config = RateLimitConfig()
        assert config.units_per_window == 60
        assert config.window_ms == 60000
        assert config.max_wait_ms == 60000
        assert config.auto_wait is True

    def test_to_dict(self):
        d = RateLimitConfig(units_per_window=5).to_dict()
        assert d["units_per_window"] == 5
        assert "auto_wait" in d

    @pytest.mark.parametrize("kwargs", [
        {"units_per_window": 0},
        {"window_ms": 0},
        {"max_wait_ms": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            RateLimitConfig(**kwargs)


class TestTokenBucket:
    def test_create(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        assert bucket.capacity == 10
        assert bucket.refill_rate_per_ms == 0.01
        assert bucket.current_level() == 10

    def test_take_full_capacity_once(self, clock):
        bucket = TokenBucket(capacity=5, refill_window_ms=1000, clock=clock)
        assert bucket.try_take(5) is True
        assert bucket.try_take(5) is False

    def test_failed_take_does_not_mutate(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        assert bucket.try_take(15) is False
        assert bucket.current_level() == 10

    def test_refill(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        bucket.try_take(10)
        assert bucket.current_level() == 0

        clock.advance(500)
        assert bucket.current_level() == pytest.approx(5)

    def test_refill_clamped_to_capacity(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        bucket.try_take(10)

        clock.advance(1000)
        assert bucket.current_level() == pytest.approx(10)

        clock.advance(5000)
        assert bucket.current_level() == 10

    def test_fractional_level_preserved(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        bucket.try_take(10)
        clock.advance(150)
        assert bucket.current_level() == pytest.approx(1.5)
        assert bucket.try_take(1) is True
        assert bucket.current_level() == pytest.approx(0.5)

    def test_time_until_available_now(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        assert bucket.time_until_available_ms(5) == 0

    def test_time_until_available_rounds_up(self, clock):
        bucket = TokenBucket(capacity=3, refill_window_ms=1000, clock=clock)
        bucket.try_take(3)
        # 3 units per 1000 ms -> one unit needs 333.33 ms
        assert bucket.time_until_available_ms(1) == 334

    def test_reset(self, clock):
        bucket = TokenBucket(capacity=10, refill_window_ms=1000, clock=clock)
        bucket.try_take(10)
        bucket.reset()
        assert bucket.current_level() == 10


class FakeSleep:
    """Records requested sleeps and advances the fake clock instead."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        # Timers never fire early; overshoot by a millisecond
        self.clock.advance(seconds * 1000 + 1)


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_one_grant_then_deny_without_auto_wait(self, clock):
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=1, window_ms=60000, auto_wait=False),
            clock=clock,
        )
        assert await limiter.acquire() is True
        assert await limiter.acquire() is False

    @pytest.mark.asyncio
    async def test_denial_logs_warning(self, clock, caplog):
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=1, window_ms=60000, auto_wait=False),
            clock=clock,
        )
        await limiter.acquire()
        with caplog.at_level(logging.WARNING, logger="efrate.rate_limiter"):
            assert await limiter.acquire() is False

        assert [r.levelno for r in caplog.records] == [logging.WARNING]

    @pytest.mark.asyncio
    async def test_auto_wait(self, clock):
        sleep = FakeSleep(clock)
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=2, window_ms=1024),
            clock=clock,
            sleep=sleep,
        )
        assert await limiter.acquire() is True
        assert await limiter.acquire() is True
        assert await limiter.acquire() is True
        assert sleep.calls == [0.512]

    @pytest.mark.asyncio
    async def test_wait_exceeding_max_is_denied(self, clock):
        sleep = FakeSleep(clock)
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=1, window_ms=60000, max_wait_ms=1000),
            clock=clock,
            sleep=sleep,
        )
        assert await limiter.acquire() is True
        assert await limiter.acquire() is False
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_lost_race_after_wait_is_denied(self, clock):
        limiter = None

        async def competing_sleep(seconds):
            clock.advance(seconds * 1000 + 1)
            # Another consumer grabs the token during the wait
            assert limiter.bucket.try_take(1) is True

        limiter = RateLimiter(
            RateLimitConfig(units_per_window=1, window_ms=1000),
            clock=clock,
            sleep=competing_sleep,
        )
        assert await limiter.acquire() is True
        assert await limiter.acquire() is False

    def test_get_wait_time_ms(self, clock):
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=1, window_ms=1024),
            clock=clock,
        )
        assert limiter.get_wait_time_ms() == 0
        limiter.bucket.try_take(1)
        assert limiter.get_wait_time_ms() == 1024

    def test_available_tokens_and_reset(self, clock):
        limiter = RateLimiter(
            RateLimitConfig(units_per_window=4, window_ms=1000),
            clock=clock,
        )
        limiter.bucket.try_take(3)
        assert limiter.available_tokens == 1
        limiter.reset()
        assert limiter.available_tokens == 4
