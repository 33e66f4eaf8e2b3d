"""aoconnect.core -- errors, logging, settings and the TTL cache.

Architecture::

    errors.py      Structured error hierarchy (AOError, NetworkError ...)
    logging.py     structlog configuration and helpers
    settings.py    AOSettings (pydantic-settings, AO_ prefix)
    cache.py       Bounded TTL cache with stale peek
"""

from aoconnect.core.cache import CacheBackend, CacheEntry, InMemoryCache
from aoconnect.core.errors import (
    AOError,
    CancelledError,
    ErrorCategory,
    ErrorContext,
    InvalidOptionsError,
    InvalidTagError,
    NetworkError,
    ProtocolViolationError,
    RateLimitError,
    RequestRejectedError,
    ResolutionError,
    ResultUnavailableError,
    SigningError,
    TimeoutError,
    is_retryable,
)
from aoconnect.core.logging import LogContext, configure_logging, get_logger
from aoconnect.core.settings import AOSettings, get_settings

__all__ = [
    "AOError",
    "AOSettings",
    "CacheBackend",
    "CacheEntry",
    "CancelledError",
    "ErrorCategory",
    "ErrorContext",
    "InMemoryCache",
    "InvalidOptionsError",
    "InvalidTagError",
    "LogContext",
    "NetworkError",
    "ProtocolViolationError",
    "RateLimitError",
    "RequestRejectedError",
    "ResolutionError",
    "ResultUnavailableError",
    "SigningError",
    "TimeoutError",
    "configure_logging",
    "get_logger",
    "get_settings",
    "is_retryable",
]
