"""Tests for the cached, single-flight scheduler resolver."""

import asyncio

import pytest

from aoconnect.core.cache import InMemoryCache
from aoconnect.core.errors import CancelledError, ResolutionError
from aoconnect.execution.cancellation import CancellationToken
from aoconnect.scheduler.directory import SchedulerLocation
from aoconnect.scheduler.resolver import ResolutionState, SchedulerResolver


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class CountingDirectory:
    """Directory that counts lookups and can be held open or made to fail."""

    def __init__(self, processes, locations, ttl_seconds=None):
        self.processes = processes
        self.locations = locations
        self.ttl_seconds = ttl_seconds
        self.scheduler_calls = 0
        self.locate_calls = 0
        self.gate: asyncio.Event | None = None
        self.failures: list[Exception] = []

    async def scheduler_of(self, process_id):
        self.scheduler_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        if process_id not in self.processes:
            raise ResolutionError(f"process {process_id} is unknown", retryable=False)
        return self.processes[process_id]

    async def locate(self, scheduler_address):
        self.locate_calls += 1
        return SchedulerLocation(
            address=scheduler_address,
            urls=(self.locations[scheduler_address],),
            ttl_seconds=self.ttl_seconds,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def counting(ids):
    return CountingDirectory({ids.process: ids.scheduler}, {ids.scheduler: ids.su}, ttl_seconds=60)


@pytest.fixture
def counted_resolver(counting, settings, clock):
    return SchedulerResolver(counting, InMemoryCache(clock=clock), settings)


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_and_caches(self, counted_resolver, counting, ids):
        first = await counted_resolver.resolve(ids.process)
        second = await counted_resolver.resolve(ids.process)

        assert first.url == ids.su
        assert first.address == ids.scheduler
        assert first.stale is False
        assert second == first
        assert counting.scheduler_calls == 1
        assert counted_resolver.state(ids.process) is ResolutionState.RESOLVED

    @pytest.mark.asyncio
    async def test_ttl_expiry_triggers_lookup(self, counted_resolver, counting, ids, clock):
        await counted_resolver.resolve(ids.process)
        clock.now += 61
        assert counted_resolver.state(ids.process) is ResolutionState.STALE

        await counted_resolver.resolve(ids.process)
        assert counting.scheduler_calls == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_location_is_not_kept(self, settings, clock, ids):
        counting = CountingDirectory(
            {ids.process: ids.scheduler}, {ids.scheduler: ids.su}, ttl_seconds=0.0
        )
        resolver = SchedulerResolver(counting, InMemoryCache(clock=clock), settings)

        first = await resolver.resolve(ids.process)
        assert first.url == ids.su
        clock.now += 10000
        assert resolver.state(ids.process) is ResolutionState.STALE

        await resolver.resolve(ids.process)
        assert counting.scheduler_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_flight(self, counted_resolver, counting, ids):
        counting.gate = asyncio.Event()

        tasks = [asyncio.create_task(counted_resolver.resolve(ids.process)) for _ in range(10)]
        await asyncio.sleep(0)
        assert counted_resolver.state(ids.process) is ResolutionState.RESOLVING

        counting.gate.set()
        results = await asyncio.gather(*tasks)

        assert counting.scheduler_calls == 1
        assert {r.url for r in results} == {ids.su}
        assert counted_resolver.state(ids.process) is ResolutionState.RESOLVED

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_lookup(self, counted_resolver, counting, ids):
        counting.gate = asyncio.Event()
        token = CancellationToken()

        cancelled = asyncio.create_task(counted_resolver.resolve(ids.process, cancel=token))
        patient = asyncio.create_task(counted_resolver.resolve(ids.process))
        await asyncio.sleep(0)

        token.cancel()
        with pytest.raises(CancelledError):
            await cancelled

        counting.gate.set()
        resolution = await patient
        assert resolution.url == ids.su
        assert counting.scheduler_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_process_not_retried(self, counted_resolver, counting):
        with pytest.raises(ResolutionError) as exc_info:
            await counted_resolver.resolve("missing")
        assert exc_info.value.retryable is False
        assert counting.scheduler_calls == 1
        assert counted_resolver.state("missing") is ResolutionState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_unreachable_directory_retried_up_to_bound(self, counted_resolver, counting, ids):
        counting.failures = [ResolutionError("gateway down")] * 5

        with pytest.raises(ResolutionError):
            await counted_resolver.resolve(ids.process)
        # resolve_max_retries=2 in the test settings
        assert counting.scheduler_calls == 2

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, counted_resolver, counting, ids):
        counting.failures = [ResolutionError("blip")]
        resolution = await counted_resolver.resolve(ids.process)
        assert resolution.url == ids.su
        assert counting.scheduler_calls == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, counted_resolver, counting, ids):
        counting.failures = [RuntimeError("bug")]
        with pytest.raises(ResolutionError, match="bug"):
            await counted_resolver.resolve(ids.process)

    @pytest.mark.asyncio
    async def test_failed_lookup_leaves_nothing_inflight(self, counted_resolver, counting, ids):
        counting.failures = [ResolutionError("down", retryable=False)]
        with pytest.raises(ResolutionError):
            await counted_resolver.resolve(ids.process)
        assert counted_resolver.state(ids.process) is ResolutionState.UNRESOLVED

        assert (await counted_resolver.resolve(ids.process)).url == ids.su


class TestStaleFallback:
    @pytest.mark.asyncio
    async def test_serves_stale_when_directory_down(self, counted_resolver, counting, ids, clock):
        await counted_resolver.resolve(ids.process)
        clock.now += 120
        counting.failures = [ResolutionError("down")] * 5

        resolution = await counted_resolver.resolve(ids.process)

        assert resolution.stale is True
        assert resolution.url == ids.su

    @pytest.mark.asyncio
    async def test_stale_refused_when_disabled(self, counted_resolver, counting, ids, clock):
        await counted_resolver.resolve(ids.process)
        clock.now += 120
        counting.failures = [ResolutionError("down")] * 5

        with pytest.raises(ResolutionError):
            await counted_resolver.resolve(ids.process, allow_stale=False)

    @pytest.mark.asyncio
    async def test_stale_setting_off(self, counting, settings, clock, ids):
        resolver = SchedulerResolver(
            counting,
            InMemoryCache(clock=clock),
            settings.model_copy(update={"allow_stale_scheduler": False}),
        )
        await resolver.resolve(ids.process)
        clock.now += 120
        counting.failures = [ResolutionError("down")] * 5

        with pytest.raises(ResolutionError):
            await resolver.resolve(ids.process)


class TestFailureReports:
    @pytest.mark.asyncio
    async def test_invalidates_at_threshold(self, counted_resolver, counting, ids):
        await counted_resolver.resolve(ids.process)

        assert counted_resolver.report_failure(ids.process) is False
        assert counted_resolver.report_failure(ids.process) is False
        assert counted_resolver.report_failure(ids.process) is True
        assert counted_resolver.state(ids.process) is ResolutionState.UNRESOLVED

        await counted_resolver.resolve(ids.process)
        assert counting.scheduler_calls == 2

    @pytest.mark.asyncio
    async def test_success_resets_count(self, counted_resolver, ids):
        await counted_resolver.resolve(ids.process)
        counted_resolver.report_failure(ids.process)
        counted_resolver.report_failure(ids.process)
        counted_resolver.report_success(ids.process)

        assert counted_resolver.report_failure(ids.process) is False
        assert counted_resolver.state(ids.process) is ResolutionState.RESOLVED

    @pytest.mark.asyncio
    async def test_invalidate_by_scheduler(self, counted_resolver, counting, ids):
        await counted_resolver.resolve_scheduler(ids.scheduler)
        counted_resolver.invalidate(scheduler=ids.scheduler)
        assert counted_resolver.state(scheduler=ids.scheduler) is ResolutionState.UNRESOLVED

    def test_key_requires_exactly_one(self, counted_resolver, ids):
        with pytest.raises(ValueError):
            counted_resolver.state()
        with pytest.raises(ValueError):
            counted_resolver.invalidate(ids.process, scheduler=ids.scheduler)


class TestSchedulerAndModule:
    @pytest.mark.asyncio
    async def test_resolve_scheduler_skips_process_lookup(self, counted_resolver, counting, ids):
        resolution = await counted_resolver.resolve_scheduler(ids.scheduler)
        assert resolution.url == ids.su
        assert counting.scheduler_calls == 0
        assert counting.locate_calls == 1

    @pytest.mark.asyncio
    async def test_resolve_module_uses_binding(self, counting, settings, ids):
        counting.locations["BOUND"] = "https://bound.test"
        resolver = SchedulerResolver(
            counting,
            InMemoryCache(),
            settings.model_copy(update={"module_schedulers": {ids.module: "BOUND"}}),
        )

        assert (await resolver.resolve_module(ids.module)).url == "https://bound.test"
        assert (await resolver.resolve_module("other")).address == ids.scheduler

    @pytest.mark.asyncio
    async def test_alternates_from_settings(self, counting, settings, ids):
        resolver = SchedulerResolver(
            counting,
            InMemoryCache(),
            settings.model_copy(
                update={"scheduler_alternates": {ids.scheduler: ["https://backup.test"]}}
            ),
        )
        resolution = await resolver.resolve(ids.process)
        assert resolution.location.urls == (ids.su, "https://backup.test")

    @pytest.mark.asyncio
    async def test_default_cache_from_settings(self, directory, settings, ids):
        resolver = SchedulerResolver(directory, settings=settings)
        assert (await resolver.resolve(ids.process)).url == ids.su
