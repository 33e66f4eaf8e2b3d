"""
Scheduler resolver: process id → scheduler location, cached.

Manifesto:
    Every dispatch needs the scheduler unit URL of its target process, and
    the directory behind that answer is slow and occasionally down. The
    resolver keeps answers in a TTL cache, collapses concurrent lookups for
    the same id into one directory round-trip, and when the directory is
    unreachable it can fall back to an expired answer, flagged as stale.

State machine (per id):
    ::

        UNRESOLVED ──resolve()──▶ RESOLVING ──ok──▶ RESOLVED
                                     │                 │ ttl elapses
                                     │ fail            ▼
                                     └──▶ UNRESOLVED  STALE ──resolve()──▶ RESOLVING

        report_failure() × threshold  ──▶ invalidate() ──▶ UNRESOLVED

Single flight:
    The first caller for an id starts a lookup task; callers arriving while
    it runs await the same task through ``asyncio.shield``, so one waiter
    being cancelled never cancels the lookup for the others.

Examples:
    >>> resolver = SchedulerResolver(directory, InMemoryCache(), settings)
    >>> resolution = await resolver.resolve(process_id)
    >>> resolution.url, resolution.stale
    ('https://su-router.ao-testnet.xyz', False)

Tags:
    scheduler, resolver, cache, single-flight, stale-while-error, aoconnect
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from aoconnect.core.cache import CacheBackend, InMemoryCache
from aoconnect.core.errors import ResolutionError
from aoconnect.core.logging import get_logger
from aoconnect.core.settings import AOSettings, get_settings
from aoconnect.execution.cancellation import CancellationToken, run_cancellable
from aoconnect.execution.retry import ExponentialBackoff, RetryContext
from aoconnect.scheduler.directory import Directory, SchedulerLocation

logger = get_logger(__name__)


class ResolutionState(str, Enum):
    UNRESOLVED = "UNRESOLVED"
    RESOLVING = "RESOLVING"
    RESOLVED = "RESOLVED"
    STALE = "STALE"


@dataclass(frozen=True)
class Resolution:
    """A resolved location; ``stale`` when served past its ttl."""

    location: SchedulerLocation
    stale: bool = False

    @property
    def url(self) -> str:
        return self.location.url

    @property
    def address(self) -> str:
        return self.location.address


def _process_key(process_id: str) -> str:
    return f"process:{process_id}"


def _scheduler_key(address: str) -> str:
    return f"scheduler:{address}"


class SchedulerResolver:
    """Cached, single-flight scheduler lookups.

    Args:
        directory: Where lookups go on a miss.
        cache: Explicit cache object; one is created from settings if omitted.
        settings: Supplies ttl default, retry bound, failure threshold, stale
            fallback switch and per-scheduler URL alternates.
    """

    def __init__(
        self,
        directory: Directory,
        cache: CacheBackend | None = None,
        settings: AOSettings | None = None,
    ):
        self.directory = directory
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else InMemoryCache(
            max_size=self.settings.scheduler_cache_size,
            default_ttl_seconds=self.settings.scheduler_cache_ttl_seconds,
        )
        self._inflight: dict[str, asyncio.Task[SchedulerLocation]] = {}
        self._failures: dict[str, int] = {}

    # ── public API ───────────────────────────────────────────────

    async def resolve(
        self,
        process_id: str,
        *,
        cancel: CancellationToken | None = None,
        allow_stale: bool | None = None,
    ) -> Resolution:
        """Location of the scheduler for *process_id*.

        Raises:
            ResolutionError: Lookup failed and no usable stale entry exists.
            CancelledError: *cancel* fired while waiting.
        """
        return await self._resolve(
            _process_key(process_id),
            lambda: self._lookup_process(process_id),
            cancel=cancel,
            allow_stale=allow_stale,
        )

    async def resolve_scheduler(
        self,
        scheduler_address: str,
        *,
        cancel: CancellationToken | None = None,
        allow_stale: bool | None = None,
    ) -> Resolution:
        """Location of a scheduler known by address (spawn, explicit hint)."""
        return await self._resolve(
            _scheduler_key(scheduler_address),
            lambda: self._lookup_scheduler(scheduler_address),
            cancel=cancel,
            allow_stale=allow_stale,
        )

    async def resolve_module(
        self,
        module_id: str,
        *,
        cancel: CancellationToken | None = None,
        allow_stale: bool | None = None,
    ) -> Resolution:
        """Location of the scheduler bound to *module_id* in settings."""
        address = self.settings.scheduler_for_module(module_id)
        return await self.resolve_scheduler(address, cancel=cancel, allow_stale=allow_stale)

    def state(self, process_id: str | None = None, *, scheduler: str | None = None) -> ResolutionState:
        key = self._key(process_id, scheduler)
        if key in self._inflight:
            return ResolutionState.RESOLVING
        if self.cache.get(key) is not None:
            return ResolutionState.RESOLVED
        if self.cache.peek(key) is not None:
            return ResolutionState.STALE
        return ResolutionState.UNRESOLVED

    def report_failure(self, process_id: str | None = None, *, scheduler: str | None = None) -> bool:
        """Record a failed dispatch; returns True when the entry was invalidated."""
        key = self._key(process_id, scheduler)
        count = self._failures.get(key, 0) + 1
        self._failures[key] = count
        if count >= self.settings.scheduler_failure_threshold:
            logger.warning("scheduler_invalidated", key=key, failures=count)
            self._invalidate_key(key)
            return True
        logger.info("scheduler_failure_recorded", key=key, failures=count)
        return False

    def report_success(self, process_id: str | None = None, *, scheduler: str | None = None) -> None:
        self._failures.pop(self._key(process_id, scheduler), None)

    def invalidate(self, process_id: str | None = None, *, scheduler: str | None = None) -> None:
        """Drop the cached location so the next resolve hits the directory."""
        self._invalidate_key(self._key(process_id, scheduler))

    # ── internals ────────────────────────────────────────────────

    @staticmethod
    def _key(process_id: str | None, scheduler: str | None) -> str:
        if (process_id is None) == (scheduler is None):
            raise ValueError("pass exactly one of process_id or scheduler")
        return _process_key(process_id) if process_id is not None else _scheduler_key(scheduler)

    def _invalidate_key(self, key: str) -> None:
        self.cache.delete(key)
        self._failures.pop(key, None)

    async def _resolve(
        self,
        key: str,
        lookup: Callable[[], Awaitable[SchedulerLocation]],
        *,
        cancel: CancellationToken | None,
        allow_stale: bool | None,
    ) -> Resolution:
        cached = self.cache.get(key)
        if cached is not None:
            return Resolution(cached)

        task = self._inflight.get(key)
        if task is None:
            logger.debug("scheduler_lookup_started", key=key)
            task = asyncio.create_task(self._lookup(key, lookup))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._finished(key, done))

        try:
            location = await run_cancellable(
                asyncio.shield(task), cancel, operation="resolve"
            )
        except ResolutionError as e:
            if allow_stale is None:
                allow_stale = self.settings.allow_stale_scheduler
            entry = self.cache.peek(key)
            if allow_stale and entry is not None:
                logger.warning("scheduler_stale_fallback", key=key, error=e.message)
                return Resolution(entry.value, stale=True)
            raise
        return Resolution(location)

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter has gone.
            task.exception()

    async def _lookup(
        self, key: str, lookup: Callable[[], Awaitable[SchedulerLocation]]
    ) -> SchedulerLocation:
        strategy = ExponentialBackoff(
            max_retries=self.settings.resolve_max_retries,
            base_delay=self.settings.resolve_base_delay,
            max_delay=self.settings.retry_max_delay,
            multiplier=self.settings.retry_multiplier,
            jitter_range=self.settings.retry_jitter,
            jitter=self.settings.retry_jitter > 0,
        )

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.info("scheduler_lookup_retry", key=key, attempt=attempt, delay=delay, error=str(error))

        retry = RetryContext(strategy, on_retry=on_retry)
        try:
            location = await retry.run_async(lookup, operation="resolve")
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"scheduler lookup failed for {key}: {e}", cause=e)

        alternates = self.settings.scheduler_alternates.get(location.address, ())
        if alternates:
            location = location.with_alternates(alternates)

        self.cache.set(key, location, ttl_seconds=location.ttl_seconds)
        logger.info(
            "scheduler_resolved",
            key=key,
            scheduler=location.address,
            url=location.url,
            ttl_seconds=location.ttl_seconds,
            attempts=retry.attempts,
        )
        return location

    async def _lookup_process(self, process_id: str) -> SchedulerLocation:
        address = await self.directory.scheduler_of(process_id)
        return await self.directory.locate(address)

    async def _lookup_scheduler(self, scheduler_address: str) -> SchedulerLocation:
        return await self.directory.locate(scheduler_address)


__all__ = ["Resolution", "ResolutionState", "SchedulerResolver"]
