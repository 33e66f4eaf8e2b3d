"""
Client facade: one object wiring transport, resolver, dispatcher and poller.

Manifesto:
    Applications should not assemble five collaborators to send a message.
    ``connect()`` builds them from :class:`AOSettings`, shares one HTTP
    client and one resolver cache between every operation, and closes the
    client when the facade is closed.

Architecture:
    ::

        AOClient
        ├── Transport            (httpx.AsyncClient, error mapping)
        ├── SchedulerResolver    (InMemoryCache, GatewayDirectory | custom)
        ├── Dispatcher           spawn · message · dryrun · assign · monitor · unmonitor
        └── ResultPoller         fetch · result · results

Examples:
    >>> async with connect(signer=Ed25519Signer.generate()) as ao:
    ...     pid = await ao.spawn(module_id)
    ...     mid = await ao.message(pid, "ping", [("Action", "Ping")])
    ...     result = await ao.result(pid, mid)

    Local network with a fixed directory::

        ao = connect(
            directory=StaticDirectory(locations={"SCHED": "http://localhost:9000"}),
            cu_url="http://localhost:6363",
            default_scheduler="SCHED",
        )

Tags:
    client, facade, connect, aoconnect
"""

from __future__ import annotations

from typing import Any

import httpx

from aoconnect.client.dispatcher import Dispatcher
from aoconnect.client.models import MonitorAck, Result, ResultsPage
from aoconnect.client.poller import ResultPoller, _Pending
from aoconnect.core.cache import CacheBackend, InMemoryCache
from aoconnect.core.settings import AOSettings, get_settings
from aoconnect.execution.transport import Transport
from aoconnect.protocol.signers import create_data_item_signer
from aoconnect.scheduler.directory import Directory, GatewayDirectory
from aoconnect.scheduler.resolver import Resolution, SchedulerResolver


class AOClient:
    """Bound operations against one network configuration."""

    def __init__(
        self,
        settings: AOSettings | None = None,
        *,
        signer: Any = None,
        directory: Directory | None = None,
        cache: CacheBackend | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.signer = create_data_item_signer(signer) if signer is not None else None
        self.transport = Transport(
            timeout=self.settings.request_timeout_seconds, client=http_client
        )
        self.directory = directory or GatewayDirectory(self.transport, self.settings.graphql_url)
        self.cache = cache if cache is not None else InMemoryCache(
            max_size=self.settings.scheduler_cache_size,
            default_ttl_seconds=self.settings.scheduler_cache_ttl_seconds,
        )
        self.resolver = SchedulerResolver(self.directory, self.cache, self.settings)
        self.dispatcher = Dispatcher(
            self.transport, self.resolver, self.settings, signer=self.signer
        )
        self.poller = ResultPoller(self.transport, self.settings)

    # Dispatch
    async def spawn(
        self, module_id: str, tags: Any = None, signer: Any = None, **kwargs: Any
    ) -> str:
        return await self.dispatcher.spawn(module_id, tags, signer, **kwargs)

    async def message(
        self,
        process_id: str | None,
        payload: str | bytes = "",
        tags: Any = None,
        signer: Any = None,
        **kwargs: Any,
    ) -> str:
        return await self.dispatcher.message(process_id, payload, tags, signer, **kwargs)

    async def dryrun(
        self, process_id: str | None, payload: str | bytes = "1234", tags: Any = None, **kwargs: Any
    ) -> Result:
        return await self.dispatcher.dryrun(process_id, payload, tags, **kwargs)

    async def assign(self, process_id: str | None, message_id: str, **kwargs: Any) -> str:
        return await self.dispatcher.assign(process_id, message_id, **kwargs)

    async def monitor(
        self, process_id: str | None, signer: Any = None, **kwargs: Any
    ) -> MonitorAck:
        return await self.dispatcher.monitor(process_id, signer, **kwargs)

    async def unmonitor(
        self, process_id: str | None, signer: Any = None, **kwargs: Any
    ) -> MonitorAck:
        return await self.dispatcher.unmonitor(process_id, signer, **kwargs)

    # Results
    async def fetch(
        self, process_id: str, message_id: str, **kwargs: Any
    ) -> Result | _Pending:
        return await self.poller.fetch(process_id, message_id, **kwargs)

    async def result(self, process_id: str, message_id: str, **kwargs: Any) -> Result:
        return await self.poller.result(process_id, message_id, **kwargs)

    async def results(self, process_id: str, **kwargs: Any) -> ResultsPage:
        return await self.poller.results(process_id, **kwargs)

    # Resolution
    async def locate(self, process_id: str, **kwargs: Any) -> Resolution:
        return await self.resolver.resolve(process_id, **kwargs)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "AOClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def connect(
    settings: AOSettings | None = None,
    *,
    signer: Any = None,
    directory: Directory | None = None,
    cache: CacheBackend | None = None,
    http_client: httpx.AsyncClient | None = None,
    **overrides: Any,
) -> AOClient:
    """Build an :class:`AOClient`; keyword overrides patch the settings.

    Example:
        >>> ao = connect(cu_url="http://localhost:6363", max_retries=5)
    """
    settings = settings or get_settings()
    if overrides:
        data = settings.model_dump(exclude={"graphql_url"})
        data.update(overrides)
        settings = AOSettings.model_validate(data)
    return AOClient(
        settings,
        signer=signer,
        directory=directory,
        cache=cache,
        http_client=http_client,
    )


__all__ = ["AOClient", "connect"]
