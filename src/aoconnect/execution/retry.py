"""Retry strategies with exponential backoff and jitter.

Retries are driven by the error's own ``retryable`` flag: a strategy only
bounds *how many* attempts run and *how long* to wait between them.
``max_retries`` counts total attempts, so ``max_retries=3`` means the call
runs at most three times.

Delays never shrink from one attempt to the next. Jitter only stretches a
delay upward (by at most ``jitter_range`` of it), and the context carries
the previous delay forward as a floor.

Example:
    >>> from aoconnect.execution.retry import ExponentialBackoff, RetryContext
    >>>
    >>> strategy = ExponentialBackoff(max_retries=5, base_delay=0.5, max_delay=10.0)
    >>> ctx = RetryContext(strategy)
    >>> response = await ctx.run_async(post_once, cancel=token)
"""

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from aoconnect.core.errors import get_retry_after, is_retryable
from aoconnect.execution.cancellation import (
    CancellationToken,
    run_cancellable,
    sleep_cancellable,
)

T = TypeVar("T")


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_retries: int

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based retry number (0 = delay before the second attempt)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another attempt should be made.

        Args:
            attempt: Number of attempts made so far
            error: The exception that caused the failure

        Returns:
            True if should retry, False otherwise
        """
        if attempt >= self.max_retries:
            return False
        if error is not None:
            return is_retryable(error)
        return True


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with upward jitter.

    Delay = min(base_delay * multiplier ** attempt * (1 + U(0, jitter_range)), max_delay)

    Attributes:
        max_retries: Total number of attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Upper bound of jitter as fraction of delay (0.0-1.0)
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = self.base_delay * (self.multiplier ** attempt)
        if self.jitter and self.jitter_range > 0:
            delay *= 1 + random.uniform(0, self.jitter_range)
        return min(delay, self.max_delay)


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        """Return constant delay."""
        return self.delay


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    max_retries: int = 1

    def next_delay(self, attempt: int) -> float:
        """No delay needed."""
        return 0.0


@dataclass
class RetryContext:
    """Context tracking retry state for one logical operation.

    Attempts are strictly sequential. A ``retry_after`` hint on the error
    raises the next delay to at least that value (still capped by the
    strategy's ``max_delay`` when it has one).

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_retries=3))
        >>> result = await ctx.run_async(lambda: client.get(url))
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float, CancellationToken | None], Awaitable[None]] = sleep_cancellable
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    last_delay: float = field(default=0.0, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)
    delays: list[float] = field(default_factory=list, init=False)

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since first attempt."""
        return (utcnow() - self.started_at).total_seconds()

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    def _delay_for(self, error: Exception) -> float:
        delay = self.strategy.next_delay(self.attempt - 1)
        retry_after = get_retry_after(error)
        if retry_after is not None:
            delay = max(delay, retry_after)
            cap = getattr(self.strategy, "max_delay", None)
            if cap is not None:
                delay = min(delay, max(cap, self.last_delay))
        delay = max(delay, self.last_delay)
        self.last_delay = delay
        return delay

    async def run_async(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        cancel: CancellationToken | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute async function with retry logic.

        Args:
            func: Async callable producing a fresh awaitable per attempt
            cancel: Optional token; stops retries and abandons the attempt
            operation: Operation name used in cancellation errors

        Returns:
            Result from successful function call

        Raises:
            The last error once it is not retryable or attempts are exhausted;
            ``CancelledError`` when the token fires.
        """
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled(operation)

            self.attempt += 1
            try:
                return await run_cancellable(func(*args, **kwargs), cancel, operation=operation)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self._delay_for(e)
                self.delays.append(delay)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                await self.sleep(delay, cancel)


def backoff_from_settings(settings: Any, *, max_retries: int | None = None) -> ExponentialBackoff:
    """Build the dispatch backoff curve from :class:`AOSettings`."""
    return ExponentialBackoff(
        max_retries=max_retries or settings.max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        multiplier=settings.retry_multiplier,
        jitter=settings.retry_jitter > 0,
        jitter_range=settings.retry_jitter,
    )


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "backoff_from_settings",
]
