"""Cooperative cancellation for in-flight operations.

A ``CancellationToken`` is handed to an operation by the caller. Once
``cancel()`` is called, no further attempt starts, a pending backoff sleep
ends at once, and an outstanding network call is abandoned: its task is
cancelled and whatever it would have returned is discarded. The operation
raises :class:`aoconnect.core.errors.CancelledError`.

Example:
    >>> token = CancellationToken()
    >>> task = asyncio.create_task(client.message(pid, "ping", cancel=token))
    >>> token.cancel("user pressed ctrl-c")
    >>> await task   # raises CancelledError
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from aoconnect.core.errors import CancelledError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Trigger cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, operation: str | None = None) -> None:
        if self.cancelled:
            raise self._error(operation)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T], *, operation: str | None = None) -> T:
        """Await *awaitable* unless the token fires first."""
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self._error(operation)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.add_done_callback(_discard_result)
        task.cancel()
        raise self._error(operation)

    async def sleep(self, delay: float, *, operation: str | None = None) -> None:
        """Sleep for *delay* seconds, returning early with an error on cancel."""
        self.raise_if_cancelled(operation)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise self._error(operation)

    def _error(self, operation: str | None) -> CancelledError:
        message = "operation cancelled"
        if self.reason:
            message = f"{message}: {self.reason}"
        error = CancelledError(message)
        if operation:
            error.with_context(operation=operation)
        return error


def _discard_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel: CancellationToken | None,
    *,
    operation: str | None = None,
) -> T:
    """``cancel.run(awaitable)`` that tolerates ``cancel=None``."""
    if cancel is None:
        return await awaitable
    return await cancel.run(awaitable, operation=operation)


async def sleep_cancellable(
    delay: float,
    cancel: CancellationToken | None,
    *,
    operation: str | None = None,
) -> None:
    if cancel is None:
        await asyncio.sleep(delay)
    else:
        await cancel.sleep(delay, operation=operation)


__all__ = ["CancellationToken", "run_cancellable", "sleep_cancellable"]
