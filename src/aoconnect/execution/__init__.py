"""aoconnect.execution -- retry/backoff, cooperative cancellation and HTTP transport."""

from aoconnect.execution.cancellation import (
    CancellationToken,
    run_cancellable,
    sleep_cancellable,
)
from aoconnect.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    backoff_from_settings,
)
from aoconnect.execution.transport import Transport, json_body, raise_for_status

__all__ = [
    "CancellationToken",
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "Transport",
    "backoff_from_settings",
    "json_body",
    "raise_for_status",
    "run_cancellable",
    "sleep_cancellable",
]
