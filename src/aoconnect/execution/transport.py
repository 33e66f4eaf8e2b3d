"""
HTTP transport shared by the resolver, dispatcher and poller.

Manifesto:
    One place turns ``httpx`` behaviour into the aoconnect error hierarchy,
    so every caller above it branches on types and the ``retryable`` flag
    instead of status codes:

    ===========================  ==========================  =========
    outcome                      raised                      retryable
    ===========================  ==========================  =========
    connect/read failure         ``NetworkError``            yes
    timeout                      ``TimeoutError``            yes
    429                          ``RateLimitError``          yes
    5xx                          ``NetworkError``            yes
    4xx                          ``RequestRejectedError``    no
    1xx / 3xx                    ``ProtocolViolationError``  no
    2xx with unreadable JSON     ``ProtocolViolationError``  no
    ===========================  ==========================  =========

    A transport performs exactly one request per call. Retrying is the
    caller's business.

Request signing:
    When a ``signer`` is passed, the request gets ``content-digest``,
    ``signature-input`` and ``signature`` headers (RFC 9421) computed over
    the exact bytes sent.

Examples:
    >>> async with Transport(timeout=10.0) as transport:
    ...     response = await transport.request("GET", "https://cu.example/result/M",
    ...                                        params={"process-id": "P"})
    ...     body = json_body(response)

Tags:
    http, httpx, transport, error-mapping, aoconnect
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import httpx

from aoconnect.core.errors import (
    NetworkError,
    ProtocolViolationError,
    RateLimitError,
    RequestRejectedError,
    TimeoutError,
)
from aoconnect.core.logging import get_logger
from aoconnect.protocol.httpsig import content_digest, sign_request
from aoconnect.protocol.signers import Signer

logger = get_logger(__name__)

USER_AGENT = "aoconnect-python"
_BODY_PREVIEW = 512


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response) -> None:
    """Map a non-2xx response onto the error hierarchy."""
    status = response.status_code
    if 200 <= status < 300:
        return

    url = str(response.request.url) if response.request is not None else None
    preview = response.text[:_BODY_PREVIEW]

    if status == 429:
        raise RateLimitError(retry_after=_retry_after(response)).with_context(
            url=url, http_status=status
        )
    if status >= 500:
        raise NetworkError(
            f"server error {status}", retry_after=_retry_after(response)
        ).with_context(url=url, http_status=status)
    if status >= 400:
        raise RequestRejectedError(
            f"request rejected with {status}: {preview}", status_code=status, body=preview
        ).with_context(url=url)
    raise ProtocolViolationError(f"unexpected status {status}").with_context(
        url=url, http_status=status
    )


def json_body(response: httpx.Response) -> Any:
    """Decode a 2xx JSON body, or raise ``ProtocolViolationError``."""
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolViolationError(
            "response body is not valid JSON", cause=e
        ).with_context(url=str(response.request.url), http_status=response.status_code)


class Transport:
    """Thin async wrapper around an ``httpx.AsyncClient``.

    Pass ``client`` to reuse a configured client (tests hand in one built on
    ``httpx.MockTransport``); otherwise the transport creates and owns one.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"user-agent": USER_AGENT},
            )
        return self._client

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        content: bytes | None = None,
        json_data: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        signer: Signer | None = None,
    ) -> httpx.Response:
        """Send one request and return the 2xx response.

        Raises:
            NetworkError: Transport failure, 5xx or 429 (retryable).
            RequestRejectedError: 4xx.
            ProtocolViolationError: Any other non-2xx status.
        """
        request_headers = {name.lower(): value for name, value in (headers or {}).items()}
        if json_data is not None:
            content = json.dumps(json_data, separators=(",", ":")).encode("utf-8")
            request_headers.setdefault("content-type", "application/json")

        target = httpx.URL(url, params=params)

        if signer is not None:
            request_headers = sign_request(
                method,
                target.path,
                request_headers,
                content_digest(content or b""),
                signer,
                authority=target.netloc.decode("ascii"),
            )

        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout

        try:
            response = await self.client.request(
                method,
                target,
                content=content,
                headers=request_headers,
                **extra,
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(f"{method} {target} timed out", cause=e).with_context(
                url=str(target)
            )
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {target} failed: {e}", cause=e).with_context(
                url=str(target)
            )

        logger.debug(
            "http_response",
            method=method,
            url=str(target),
            status=response.status_code,
        )
        raise_for_status(response)
        return response

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


__all__ = ["Transport", "json_body", "raise_for_status"]
