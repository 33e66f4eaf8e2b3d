"""
Structured error types for aoconnect.

Every failure an operation can surface is an ``AOError`` subclass carrying a
category, an explicit retry flag, structured context and the chained cause.
Callers branch on the type; the dispatcher and resolver branch on
``retryable``.

Manifesto:
    - **Typed Error Hierarchy:** One type per failure kind, never message parsing
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry process/message ids, URL and HTTP status
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                          AOError                              │
        │  (category, retryable, retry_after, context, cause)           │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  InvalidTagError        SigningError        ResolutionError   │
        │  InvalidOptionsError    (SIGNING)           (RESOLUTION)      │
        │  (VALIDATION)                                                  │
        │                                                               │
        │  NetworkError           RequestRejectedError                  │
        │  (retryable=True)       (REMOTE, 4xx)                         │
        │    │                                                          │
        │  TimeoutError           ProtocolViolationError                │
        │  RateLimitError         (PROTOCOL)                            │
        │                                                               │
        │  ResultUnavailableError CancelledError                        │
        │  (RESULT)               (CANCELLED)                           │
        └──────────────────────────────────────────────────────────────┘

Retry policy:
    - ``InvalidTagError``, ``InvalidOptionsError``, ``SigningError``:
      component-local, never retried.
    - ``NetworkError`` and subclasses: retried with backoff.
    - ``ResolutionError``: retried by the resolver when the lookup failed
      in transit, never when the directory answered "unknown".
    - ``RequestRejectedError``, ``ProtocolViolationError``: surfaced at once.

Examples:
    >>> error = NetworkError("connection reset", cause=ConnectionResetError())
    >>> error.retryable
    True
    >>> error.with_context(process_id="P", url="https://su.example").context.url
    'https://su.example'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, aoconnect
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and log routing."""

    VALIDATION = "VALIDATION"       # Bad caller input (tags, options)
    SIGNING = "SIGNING"             # Key material, envelope construction
    RESOLUTION = "RESOLUTION"       # Scheduler lookup
    NETWORK = "NETWORK"             # Transport failure, 5xx, 429
    REMOTE = "REMOTE"               # Remote refused the request (4xx)
    PROTOCOL = "PROTOCOL"           # Response shape broke the contract
    RESULT = "RESULT"               # Result never became available
    CANCELLED = "CANCELLED"         # Caller aborted
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are emitted by ``to_dict()`` so log lines stay small.

    Attributes:
        operation: Operation name (``message``, ``spawn``, ``result`` ...)
        process_id: Target process id
        message_id: Message or data item id
        url: URL being accessed
        http_status: HTTP status code if applicable
        attempt: Attempt number when the error occurred
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    process_id: str | None = None
    message_id: str | None = None
    url: str | None = None
    http_status: int | None = None
    attempt: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation", "process_id", "message_id", "url", "http_status", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AOError(Exception):
    """
    Base exception for every aoconnect error.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override both per instance.

    Examples:
        >>> error = AOError("boom")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AOError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NetworkError("reset").with_context(process_id=pid, url=url)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# INPUT ERRORS (Never Retryable)
# =============================================================================


class InvalidTagError(AOError):
    """A tag set violates the protocol constraints."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, tag_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.tag_name = tag_name


class InvalidOptionsError(AOError):
    """Operation options were malformed or contained unknown keys."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class SigningError(AOError):
    """Key material was unusable or the envelope could not be built."""

    default_category = ErrorCategory.SIGNING
    default_retryable = False


# =============================================================================
# RESOLUTION
# =============================================================================


class ResolutionError(AOError):
    """
    The scheduler responsible for a process (or module) could not be found.

    ``retryable`` is True when the directory could not be reached and False
    when it answered but knew nothing about the id.
    """

    default_category = ErrorCategory.RESOLUTION
    default_retryable = True


# =============================================================================
# TRANSPORT (Usually Retryable)
# =============================================================================


class NetworkError(AOError):
    """Transport failure or 5xx-class response."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TimeoutError(NetworkError):
    """Request timed out."""


class RateLimitError(NetworkError):
    """Remote answered 429."""

    def __init__(self, message: str = "Rate limit exceeded", **kwargs: Any):
        super().__init__(message, **kwargs)


class RequestRejectedError(AOError):
    """Remote refused the request with a 4xx status."""

    default_category = ErrorCategory.REMOTE
    default_retryable = False

    def __init__(self, message: str, *, status_code: int, body: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body
        if self.context.http_status is None:
            self.context.http_status = status_code


class ProtocolViolationError(AOError):
    """A successful response did not match the expected contract."""

    default_category = ErrorCategory.PROTOCOL
    default_retryable = False


# =============================================================================
# OUTCOME
# =============================================================================


class ResultUnavailableError(AOError):
    """The polling window closed before the result was computed."""

    default_category = ErrorCategory.RESULT
    default_retryable = False


class CancelledError(AOError):
    """The caller cancelled the operation."""

    default_category = ErrorCategory.CANCELLED
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, AOError):
        return error.retryable
    return False


def get_retry_after(error: Exception) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, AOError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "AOError",
    "InvalidTagError",
    "InvalidOptionsError",
    "SigningError",
    "ResolutionError",
    "NetworkError",
    "TimeoutError",
    "RateLimitError",
    "RequestRejectedError",
    "ProtocolViolationError",
    "ResultUnavailableError",
    "CancelledError",
    "is_retryable",
    "get_retry_after",
]
