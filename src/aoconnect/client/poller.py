"""Result poller: read computed results back from the compute unit.

``fetch`` asks once (with transport retries) and answers either a
:class:`Result` or :data:`NOT_YET_AVAILABLE` when the CU answers 404.
``result`` keeps asking every ``result_poll_interval_seconds`` until the
result shows up or ``result_poll_window_seconds`` has passed, then raises
:class:`ResultUnavailableError`. ``results`` reads a cursor-paged slice of
a process's results.

Example:
    >>> poller = ResultPoller(transport, settings)
    >>> result = await poller.result(process_id, message_id)
    >>> result.messages[0]["Data"]
    'pong'
"""

from __future__ import annotations

import enum
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from aoconnect.client.models import Result, ResultsPage, parse_model
from aoconnect.client.options import OperationOptions
from aoconnect.core.errors import (
    AOError,
    InvalidOptionsError,
    RequestRejectedError,
    ResultUnavailableError,
)
from aoconnect.core.logging import LogContext, get_logger
from aoconnect.core.settings import AOSettings, get_settings
from aoconnect.execution.cancellation import CancellationToken, sleep_cancellable
from aoconnect.execution.retry import RetryContext, backoff_from_settings
from aoconnect.execution.transport import Transport, json_body

logger = get_logger(__name__)

SORT_ORDERS = ("ASC", "DESC")


class _Pending(enum.Enum):
    NOT_YET_AVAILABLE = "NOT_YET_AVAILABLE"

    def __repr__(self) -> str:
        return self.value


NOT_YET_AVAILABLE = _Pending.NOT_YET_AVAILABLE

OptionsInput = OperationOptions | Mapping[str, Any] | None
SleepFn = Callable[[float, CancellationToken | None], Awaitable[None]]


class ResultPoller:
    """Reads results from the CU.

    Args:
        transport: HTTP transport.
        settings: CU URL, poll interval/window, retry curve.
        sleep: Poll sleep (cancellable); tests pass a recorder.
        clock: Monotonic clock measuring the poll window.
    """

    def __init__(
        self,
        transport: Transport,
        settings: AOSettings | None = None,
        *,
        sleep: SleepFn = sleep_cancellable,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock

    def _cu_url(self, opts: OperationOptions) -> str:
        return opts.endpoint_override or self.settings.cu_url.rstrip("/")

    async def _get(
        self,
        url: str,
        params: dict[str, Any],
        opts: OperationOptions,
        cancel: CancellationToken | None,
        operation: str,
    ) -> Any:
        retry = RetryContext(
            backoff_from_settings(self.settings, max_retries=opts.max_retries),
            sleep=self._sleep,
        )

        async def attempt() -> Any:
            response = await self.transport.request(
                "GET", url, params=params, timeout=opts.timeout_seconds
            )
            return json_body(response)

        try:
            return await retry.run_async(attempt, cancel=cancel, operation=operation)
        except AOError as e:
            raise e.with_context(operation=operation, attempt=retry.attempts)

    async def fetch(
        self,
        process_id: str,
        message_id: str,
        *,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> Result | _Pending:
        """One read of ``/result/<message>``; 404 means not computed yet."""
        opts = OperationOptions.parse(options)
        process_id = process_id or opts.process_id
        if not process_id or not message_id:
            raise InvalidOptionsError("process_id and message_id are required")

        url = f"{self._cu_url(opts)}/result/{message_id}"
        try:
            payload = await self._get(url, {"process-id": process_id}, opts, cancel, "result")
        except RequestRejectedError as e:
            if e.status_code == 404:
                return NOT_YET_AVAILABLE
            raise
        return parse_model(Result, payload, what="result")

    async def result(
        self,
        process_id: str,
        message_id: str,
        *,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
        interval: float | None = None,
        window: float | None = None,
    ) -> Result:
        """Poll until the result of *message_id* is available.

        Raises:
            ResultUnavailableError: Window elapsed without a result.
            CancelledError: *cancel* fired.
        """
        interval = self.settings.result_poll_interval_seconds if interval is None else interval
        window = self.settings.result_poll_window_seconds if window is None else window
        deadline = self._clock() + window
        polls = 0

        with LogContext(operation="result", process_id=process_id, message_id=message_id):
            while True:
                polls += 1
                outcome = await self.fetch(
                    process_id, message_id, options=options, cancel=cancel
                )
                if outcome is not NOT_YET_AVAILABLE:
                    logger.info("result_received", polls=polls)
                    return outcome

                if self._clock() + interval > deadline:
                    logger.warning("result_window_elapsed", polls=polls, window=window)
                    raise ResultUnavailableError(
                        f"no result for {message_id} within {window}s"
                    ).with_context(
                        process_id=process_id, message_id=message_id, polls=polls
                    )

                logger.debug("result_pending", polls=polls, interval=interval)
                await self._sleep(interval, cancel)

    async def results(
        self,
        process_id: str,
        *,
        from_: str | None = None,
        to: str | None = None,
        sort: str = "ASC",
        limit: int = 25,
        options: OptionsInput = None,
        cancel: CancellationToken | None = None,
    ) -> ResultsPage:
        """A page of results for *process_id*, bounded by cursors."""
        opts = OperationOptions.parse(options)
        process_id = process_id or opts.process_id
        if not process_id:
            raise InvalidOptionsError("process_id is required")
        sort = sort.upper()
        if sort not in SORT_ORDERS:
            raise InvalidOptionsError(f"sort must be one of {SORT_ORDERS}, got {sort!r}")
        if limit < 1:
            raise InvalidOptionsError("limit must be >= 1")

        params: dict[str, Any] = {"sort": sort, "limit": limit}
        if from_:
            params["from"] = from_
        if to:
            params["to"] = to

        url = f"{self._cu_url(opts)}/results/{process_id}"
        payload = await self._get(url, params, opts, cancel, "results")
        page = parse_model(ResultsPage, payload, what="results page")
        logger.debug("results_page", process_id=process_id, count=len(page))
        return page


__all__ = ["NOT_YET_AVAILABLE", "ResultPoller"]
