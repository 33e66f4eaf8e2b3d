"""
Shared pytest fixtures for aoconnect tests.

This module provides:
- Signing identities (Ed25519 per test, one 4096-bit RSA key per session)
- Fast settings (tiny backoff, short poll window)
- A fake network routing ``httpx.MockTransport`` requests to handlers
- A recording sleep so backoff delays can be asserted without waiting
"""

from __future__ import annotations

import json
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import rsa

from aoconnect.core.cache import InMemoryCache
from aoconnect.core.settings import AOSettings
from aoconnect.execution.transport import Transport
from aoconnect.protocol.data_item import DataItem
from aoconnect.protocol.encoding import b64url_encode
from aoconnect.protocol.signers import ArweaveSigner, Ed25519Signer
from aoconnect.scheduler.directory import StaticDirectory
from aoconnect.scheduler.resolver import SchedulerResolver

PROCESS_ID = b64url_encode(b"\x01" * 32)
OTHER_PROCESS_ID = b64url_encode(b"\x02" * 32)
MODULE_ID = b64url_encode(b"\x03" * 32)
SCHEDULER = b64url_encode(b"\x04" * 32)
SU_URL = "https://su.test"
CU_URL = "https://cu.test"
MU_URL = "https://mu.test"


@pytest.fixture
def ids() -> SimpleNamespace:
    return SimpleNamespace(
        process=PROCESS_ID,
        other_process=OTHER_PROCESS_ID,
        module=MODULE_ID,
        scheduler=SCHEDULER,
        su=SU_URL,
        cu=CU_URL,
        mu=MU_URL,
    )


# =============================================================================
# Identities
# =============================================================================


@pytest.fixture
def ed_signer() -> Ed25519Signer:
    return Ed25519Signer.from_seed(bytes(range(32)))


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=4096)


@pytest.fixture(scope="session")
def rsa_signer(rsa_key) -> ArweaveSigner:
    """Deterministic Arweave signer (PSS salt length 0)."""
    return ArweaveSigner(rsa_key, salt_length=0)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings() -> AOSettings:
    return AOSettings(
        cu_url=CU_URL,
        mu_url=MU_URL,
        gateway_url="https://gateway.test",
        default_scheduler=SCHEDULER,
        max_retries=3,
        retry_base_delay=0.01,
        retry_max_delay=1.0,
        retry_multiplier=2.0,
        retry_jitter=0.25,
        resolve_max_retries=2,
        resolve_base_delay=0.0,
        result_poll_interval_seconds=0.01,
        result_poll_window_seconds=0.05,
    )


# =============================================================================
# Fake network
# =============================================================================


class FakeNetwork:
    """Routes mock-transport requests by method and URL prefix, recording each one."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []

    def route(
        self, method: str, prefix: str, handler: Callable[[httpx.Request], httpx.Response]
    ) -> None:
        self._routes.append((method, prefix, handler))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, prefix, handler in self._routes:
            if request.method == method and str(request.url).startswith(prefix):
                return handler(request)
        return httpx.Response(404, text=f"no route for {request.method} {request.url}")

    def sent_to(self, prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(prefix)]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    @staticmethod
    def echo_item(request: httpx.Request) -> httpx.Response:
        return echo_item(request)

    @staticmethod
    def json(payload: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
        return json_response(payload, status)

    @staticmethod
    def sequence(*responses: httpx.Response | Callable) -> Callable[[httpx.Request], httpx.Response]:
        return sequence(*responses)


def echo_item(request: httpx.Request) -> httpx.Response:
    """Scheduler-unit behaviour: store the data item, answer with its id."""
    item = DataItem.from_bytes(request.content)
    return httpx.Response(200, json={"id": item.id, "timestamp": 1700000000000})


def json_response(payload: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=json.dumps(payload).encode())

    return handler


def sequence(*responses: httpx.Response | Callable) -> Callable[[httpx.Request], httpx.Response]:
    """Answer successive requests with successive responses; the last one repeats."""
    remaining = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        current = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if callable(current):
            return current(request)
        return httpx.Response(current.status_code, headers=current.headers, content=current.content)

    return handler


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest_asyncio.fixture
async def transport(network):
    transport = Transport(client=network.client())
    yield transport
    await transport.client.aclose()


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory(
        processes={PROCESS_ID: SCHEDULER},
        locations={SCHEDULER: SU_URL},
    )


@pytest.fixture
def resolver(directory, settings) -> SchedulerResolver:
    return SchedulerResolver(directory, InMemoryCache(), settings)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Records delays instead of sleeping; still honours cancellation."""

    async def _sleep(delay, cancel=None):
        sleeps.append(delay)
        if cancel is not None:
            cancel.raise_if_cancelled()

    return _sleep
