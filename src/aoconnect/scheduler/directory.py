"""
Directory adapters: where the resolver learns who schedules a process.

Manifesto:
    The resolver is storage-agnostic. It asks a ``Directory`` two questions
    and caches the answers:

    1. ``scheduler_of(process_id)``: which scheduler address owns a process
       (the process's ``Scheduler`` tag).
    2. ``locate(scheduler_address)``: where that scheduler is reachable
       (its latest ``Scheduler-Location`` record: ``Url`` and ``Time-To-Live``).

    Each adapter answers "unknown" with a non-retryable ``ResolutionError``
    and "could not ask" with a retryable one, so the resolver's retry loop
    does the right thing without inspecting messages.

Architecture:
    ::

        Directory (Protocol)
        ├── GatewayDirectory   GraphQL against an Arweave gateway
        └── StaticDirectory    in-memory map (local networks, tests)

Examples:
    >>> directory = StaticDirectory(
    ...     processes={"P": "SCHED"},
    ...     locations={"SCHED": "https://su.local"},
    ... )
    >>> await directory.scheduler_of("P")
    'SCHED'

Tags:
    scheduler, directory, graphql, gateway, aoconnect
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from aoconnect.core.errors import AOError, ResolutionError
from aoconnect.core.logging import get_logger
from aoconnect.execution.transport import Transport, json_body

logger = get_logger(__name__)

SCHEDULER_LOCATION_TYPE = "Scheduler-Location"


@dataclass(frozen=True)
class SchedulerLocation:
    """Where a scheduler accepts messages. Primary URL first."""

    address: str
    urls: tuple[str, ...]
    ttl_seconds: float | None = None
    resolved_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.urls:
            raise ValueError("a scheduler location needs at least one URL")

    @property
    def url(self) -> str:
        return self.urls[0]

    def with_alternates(self, alternates: Iterable[str]) -> "SchedulerLocation":
        urls = list(self.urls)
        for url in alternates:
            url = url.rstrip("/")
            if url not in urls:
                urls.append(url)
        return replace(self, urls=tuple(urls))


class Directory(Protocol):
    """Lookup service consulted by the resolver on cache misses."""

    async def scheduler_of(self, process_id: str) -> str:
        """Scheduler address recorded for *process_id*."""
        ...

    async def locate(self, scheduler_address: str) -> SchedulerLocation:
        """Current location of the scheduler at *scheduler_address*."""
        ...


class StaticDirectory:
    """A directory backed by dictionaries."""

    def __init__(
        self,
        *,
        processes: Mapping[str, str] | None = None,
        locations: Mapping[str, str | Sequence[str]] | None = None,
        ttl_seconds: float | None = None,
    ):
        self.processes = dict(processes or {})
        self.locations = {
            address: (urls,) if isinstance(urls, str) else tuple(urls)
            for address, urls in (locations or {}).items()
        }
        self.ttl_seconds = ttl_seconds

    async def scheduler_of(self, process_id: str) -> str:
        try:
            return self.processes[process_id]
        except KeyError:
            raise ResolutionError(
                f"process {process_id} is unknown", retryable=False
            ).with_context(process_id=process_id)

    async def locate(self, scheduler_address: str) -> SchedulerLocation:
        urls = self.locations.get(scheduler_address)
        if not urls:
            raise ResolutionError(
                f"no location recorded for scheduler {scheduler_address}", retryable=False
            ).with_context(scheduler=scheduler_address)
        return SchedulerLocation(
            address=scheduler_address,
            urls=tuple(url.rstrip("/") for url in urls),
            ttl_seconds=self.ttl_seconds,
        )


# ── Gateway (GraphQL) ────────────────────────────────────────────────────

PROCESS_QUERY = """
query GetProcess($ids: [ID!]!) {
  transactions(ids: $ids, first: 1) {
    edges { node { id tags { name value } } }
  }
}
"""

LOCATION_QUERY = """
query GetSchedulerLocation($owners: [String!]!) {
  transactions(
    owners: $owners
    tags: [{ name: "Type", values: ["Scheduler-Location"] }]
    sort: HEIGHT_DESC
    first: 1
  ) {
    edges { node { id tags { name value } } }
  }
}
"""


def _first_node_tags(payload: Any) -> list[dict[str, Any]] | None:
    try:
        edges = payload["data"]["transactions"]["edges"]
    except (KeyError, TypeError) as e:
        raise ResolutionError(
            "gateway answered with an unexpected GraphQL shape", retryable=False, cause=e
        )
    if not edges:
        return None
    try:
        return list(edges[0]["node"]["tags"])
    except (KeyError, TypeError) as e:
        raise ResolutionError(
            "gateway transaction node has no tags", retryable=False, cause=e
        )


def _tag(tags: list[dict[str, Any]], name: str) -> str | None:
    for tag in tags:
        if str(tag.get("name", "")).lower() == name.lower():
            return tag.get("value")
    return None


class GatewayDirectory:
    """Resolve schedulers through an Arweave gateway's GraphQL endpoint.

    ``Time-To-Live`` on a location record is in milliseconds.
    """

    def __init__(
        self,
        transport: Transport,
        graphql_url: str,
        *,
        timeout: float | None = None,
    ):
        self.transport = transport
        self.graphql_url = graphql_url
        self.timeout = timeout

    async def _query(self, query: str, variables: dict[str, Any]) -> Any:
        try:
            response = await self.transport.request(
                "POST",
                self.graphql_url,
                json_data={"query": query, "variables": variables},
                timeout=self.timeout,
            )
            payload = json_body(response)
        except AOError as e:
            raise ResolutionError(
                f"gateway lookup failed: {e.message}", retryable=e.retryable, cause=e
            ).with_context(url=self.graphql_url)
        if isinstance(payload, dict) and payload.get("errors"):
            raise ResolutionError(
                f"gateway GraphQL errors: {payload['errors']!r}", retryable=False
            ).with_context(url=self.graphql_url)
        return payload

    async def scheduler_of(self, process_id: str) -> str:
        payload = await self._query(PROCESS_QUERY, {"ids": [process_id]})
        tags = _first_node_tags(payload)
        if tags is None:
            raise ResolutionError(
                f"process {process_id} not found on gateway", retryable=False
            ).with_context(process_id=process_id)
        scheduler = _tag(tags, "Scheduler")
        if not scheduler:
            raise ResolutionError(
                f"process {process_id} has no Scheduler tag", retryable=False
            ).with_context(process_id=process_id)
        logger.debug("process_scheduler_found", process_id=process_id, scheduler=scheduler)
        return scheduler

    async def locate(self, scheduler_address: str) -> SchedulerLocation:
        payload = await self._query(LOCATION_QUERY, {"owners": [scheduler_address]})
        tags = _first_node_tags(payload)
        if tags is None:
            raise ResolutionError(
                f"no {SCHEDULER_LOCATION_TYPE} record for {scheduler_address}",
                retryable=False,
            ).with_context(scheduler=scheduler_address)

        url = _tag(tags, "Url")
        if not url:
            raise ResolutionError(
                f"{SCHEDULER_LOCATION_TYPE} record for {scheduler_address} has no Url",
                retryable=False,
            ).with_context(scheduler=scheduler_address)

        ttl_seconds: float | None = None
        ttl = _tag(tags, "Time-To-Live")
        if ttl:
            try:
                ttl_seconds = int(ttl) / 1000
            except ValueError:
                logger.warning(
                    "scheduler_ttl_unparseable", scheduler=scheduler_address, ttl=ttl
                )

        return SchedulerLocation(
            address=scheduler_address,
            urls=(url.rstrip("/"),),
            ttl_seconds=ttl_seconds,
        )


__all__ = [
    "Directory",
    "GatewayDirectory",
    "LOCATION_QUERY",
    "PROCESS_QUERY",
    "SCHEDULER_LOCATION_TYPE",
    "SchedulerLocation",
    "StaticDirectory",
]
