"""Tests for retry strategies and the retry context."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from aoconnect.core.errors import (
    CancelledError,
    NetworkError,
    RateLimitError,
    RequestRejectedError,
)
from aoconnect.core.settings import AOSettings
from aoconnect.execution.cancellation import CancellationToken
from aoconnect.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    backoff_from_settings,
)


class TestExponentialBackoff:
    """Tests for ExponentialBackoff strategy."""

    def test_default_configuration(self):
        strategy = ExponentialBackoff()
        assert strategy.max_retries == 3
        assert strategy.base_delay == 0.5
        assert strategy.max_delay == 10.0
        assert strategy.multiplier == 2.0
        assert strategy.jitter is True

    def test_delay_calculation_no_jitter(self):
        strategy = ExponentialBackoff(base_delay=1.0, multiplier=2.0, max_delay=60.0, jitter=False)
        assert strategy.next_delay(0) == 1.0
        assert strategy.next_delay(1) == 2.0
        assert strategy.next_delay(2) == 4.0
        assert strategy.next_delay(3) == 8.0

    def test_delay_capped_at_max(self):
        strategy = ExponentialBackoff(base_delay=10.0, max_delay=30.0, jitter=False)
        assert strategy.next_delay(5) == 30.0

    def test_jitter_only_stretches_upward(self):
        strategy = ExponentialBackoff(base_delay=1.0, max_delay=100.0, jitter_range=0.25)
        for attempt in range(4):
            for _ in range(50):
                delay = strategy.next_delay(attempt)
                base = 2.0**attempt
                assert base <= delay <= base * 1.25

    def test_should_retry_counts_total_attempts(self):
        strategy = ExponentialBackoff(max_retries=3)
        assert strategy.should_retry(1, NetworkError("x")) is True
        assert strategy.should_retry(2, NetworkError("x")) is True
        assert strategy.should_retry(3, NetworkError("x")) is False

    def test_should_not_retry_non_retryable(self):
        strategy = ExponentialBackoff(max_retries=5)
        assert strategy.should_retry(1, RequestRejectedError("no", status_code=400)) is False
        assert strategy.should_retry(1, ValueError("plain")) is False


class TestOtherStrategies:
    def test_constant(self):
        assert ConstantBackoff(delay=2.0).next_delay(7) == 2.0

    def test_no_retry(self):
        strategy = NoRetry()
        assert strategy.should_retry(1, NetworkError("x")) is False

    def test_from_settings(self):
        settings = AOSettings(max_retries=4, retry_base_delay=0.1, retry_jitter=0.0)
        strategy = backoff_from_settings(settings)
        assert strategy.max_retries == 4
        assert strategy.base_delay == 0.1
        assert strategy.jitter is False
        assert backoff_from_settings(settings, max_retries=2).max_retries == 2


class TestRetryContext:
    @pytest.fixture
    def recorder(self):
        delays = []

        async def sleep(delay, cancel=None):
            delays.append(delay)

        return delays, sleep

    @pytest.mark.asyncio
    async def test_success_first_try(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(return_value="ok")
        ctx = RetryContext(ExponentialBackoff(max_retries=3), sleep=sleep)

        assert await ctx.run_async(func) == "ok"
        assert ctx.attempts == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(side_effect=[NetworkError("a"), NetworkError("b"), "ok"])
        ctx = RetryContext(ExponentialBackoff(max_retries=3, jitter=False), sleep=sleep)

        assert await ctx.run_async(func) == "ok"
        assert func.await_count == 3
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(side_effect=NetworkError("down"))
        ctx = RetryContext(ExponentialBackoff(max_retries=4), sleep=sleep)

        with pytest.raises(NetworkError):
            await ctx.run_async(func)
        assert func.await_count == 4
        assert len(delays) == 3
        assert len(ctx.errors) == 4

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(side_effect=RequestRejectedError("bad", status_code=400))
        ctx = RetryContext(ExponentialBackoff(max_retries=5), sleep=sleep)

        with pytest.raises(RequestRejectedError):
            await ctx.run_async(func)
        assert func.await_count == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_delays_never_decrease(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(side_effect=NetworkError("down"))
        strategy = ExponentialBackoff(max_retries=6, base_delay=1.0, max_delay=3.0, jitter_range=0.5)
        ctx = RetryContext(strategy, sleep=sleep)

        # Jitter sequence that would shrink the capped delays.
        with patch("aoconnect.execution.retry.random.uniform", side_effect=[0.5, 0.0, 0.5, 0.0, 0.0]):
            with pytest.raises(NetworkError):
                await ctx.run_async(func)

        assert delays == sorted(delays)
        assert delays[0] == 1.5

    @pytest.mark.asyncio
    async def test_retry_after_raises_delay(self, recorder):
        delays, sleep = recorder
        func = AsyncMock(side_effect=[RateLimitError(retry_after=2.0), "ok"])
        ctx = RetryContext(ExponentialBackoff(max_retries=3, jitter=False), sleep=sleep)

        await ctx.run_async(func)
        assert delays == [2.0]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, recorder):
        _, sleep = recorder
        calls = []
        func = AsyncMock(side_effect=[NetworkError("a"), "ok"])
        ctx = RetryContext(
            ExponentialBackoff(max_retries=2, jitter=False),
            on_retry=lambda n, e, d: calls.append((n, str(e), d)),
            sleep=sleep,
        )
        await ctx.run_async(func)
        assert calls == [(1, "a", 0.5)]

    @pytest.mark.asyncio
    async def test_cancel_stops_retries(self):
        token = CancellationToken()
        attempts = 0

        async def failing():
            nonlocal attempts
            attempts += 1
            token.cancel("stop")
            raise NetworkError("down")

        ctx = RetryContext(ExponentialBackoff(max_retries=5, base_delay=10.0))
        with pytest.raises(CancelledError):
            await asyncio.wait_for(ctx.run_async(failing, cancel=token), timeout=2.0)
        assert attempts == 1
