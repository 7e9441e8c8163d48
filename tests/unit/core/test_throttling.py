"""Tests for rate limiting and retry policies."""
from unittest.mock import AsyncMock

import pytest

from logguard.core.logging.config import RetryConfig, ThrottlingConfig
from logguard.core.logging.throttling import RateLimiter, RetryPolicy


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Test the fixed-window rate limiter."""

    def test_from_config_without_limit(self):
        """Test no limiter is built without max_per_second."""
        assert RateLimiter.from_config(None) is None
        assert RateLimiter.from_config(ThrottlingConfig()) is None
        assert RateLimiter.from_config(ThrottlingConfig(max_per_second=5)).max_per_second == 5

    def test_drop_policy(self):
        """Test items beyond the limit are dropped."""
        clock = FakeClock()
        limiter = RateLimiter(2, overflow_policy="drop", clock=clock)

        accepted = [item for i in range(5) for item in limiter.offer(i)]

        assert accepted == [0, 1]
        assert limiter.dropped == 3
        assert limiter.pending == 0

    def test_window_resets_after_one_second(self):
        """Test capacity returns in the next window."""
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)

        assert limiter.offer("a") == ["a"]
        assert limiter.offer("b") == []
        clock.advance(1.0)
        assert limiter.offer("c") == ["c"]

    def test_queue_policy_preserves_order(self):
        """Test deferred items are released before newer ones."""
        clock = FakeClock()
        limiter = RateLimiter(2, overflow_policy="queue", clock=clock)

        first = [item for i in range(4) for item in limiter.offer(i)]
        assert first == [0, 1]
        assert limiter.pending == 2

        clock.advance(1.5)
        assert limiter.offer(4) == [2, 3]
        assert limiter.pending == 1

        clock.advance(1.0)
        assert limiter.release() == [4]

    def test_queue_bounded(self):
        """Test the deferred queue respects max_queue_size."""
        limiter = RateLimiter(1, overflow_policy="queue", max_queue_size=1, clock=FakeClock())

        limiter.offer("a")
        limiter.offer("b")
        limiter.offer("c")

        assert limiter.pending == 1
        assert limiter.dropped == 1

    def test_drain_ignores_limit(self):
        """Test drain returns every deferred item."""
        limiter = RateLimiter(1, overflow_policy="queue", clock=FakeClock())
        for item in "abcd":
            limiter.offer(item)

        assert limiter.drain() == ["b", "c", "d"]
        assert limiter.pending == 0


class TestRetryPolicy:
    """Test bounded retry with backoff."""

    def test_exponential_delays_capped(self):
        """Test backoff grows by the multiplier up to max_delay."""
        policy = RetryPolicy(RetryConfig(max_attempts=5, initial_delay=1, backoff_multiplier=2, max_delay=5))
        assert policy.delays() == [1, 2, 4, 5]

    def test_fixed_delays(self):
        """Test non-exponential backoff keeps the initial delay."""
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_delay=0.5, exponential=False))
        assert policy.delays() == [0.5, 0.5]

    def test_single_attempt(self):
        """Test single_attempt never waits."""
        assert RetryPolicy.single_attempt().delays() == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Test a failing call is retried and its result returned."""
        fn = AsyncMock(side_effect=[OSError("disk"), OSError("disk"), "ok"])
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_delay=0), retry_on=(OSError,))

        result = await policy.call(fn, "batch")

        assert result == "ok"
        assert fn.await_count == 3
        fn.assert_awaited_with("batch")

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Test the last error is raised once attempts are exhausted."""
        fn = AsyncMock(side_effect=OSError("disk"))
        policy = RetryPolicy(RetryConfig(max_attempts=2, initial_delay=0), retry_on=(OSError,))

        with pytest.raises(OSError, match="disk"):
            await policy.call(fn)

        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        """Test exceptions outside retry_on propagate immediately."""
        fn = AsyncMock(side_effect=ValueError("bad payload"))
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_delay=0), retry_on=(OSError,))

        with pytest.raises(ValueError):
            await policy.call(fn)

        assert fn.await_count == 1
