"""Tests for the HTTP transport's status mapping and request signing."""

import httpx
import pytest

from aoconnect.core.errors import (
    NetworkError,
    ProtocolViolationError,
    RateLimitError,
    RequestRejectedError,
    TimeoutError,
)
from aoconnect.execution.transport import Transport, json_body, raise_for_status
from aoconnect.protocol.httpsig import content_digest, verify_request


def _response(status, content=b"", headers=None):
    request = httpx.Request("POST", "https://su.test/")
    return httpx.Response(status, content=content, headers=headers, request=request)


class TestRaiseForStatus:
    def test_2xx_passes(self):
        raise_for_status(_response(200))
        raise_for_status(_response(204))

    def test_429_is_rate_limited_with_retry_after(self):
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_status(_response(429, headers={"retry-after": "3"}))
        assert exc_info.value.retryable is True
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.context.http_status == 429

    def test_5xx_is_retryable_network_error(self):
        with pytest.raises(NetworkError) as exc_info:
            raise_for_status(_response(503))
        assert exc_info.value.retryable is True
        assert exc_info.value.context.url == "https://su.test/"

    def test_4xx_is_rejected_not_retryable(self):
        with pytest.raises(RequestRejectedError) as exc_info:
            raise_for_status(_response(400, content=b"bad signature"))
        error = exc_info.value
        assert error.retryable is False
        assert error.status_code == 400
        assert error.body == "bad signature"
        assert error.context.http_status == 400

    def test_redirect_is_protocol_violation(self):
        with pytest.raises(ProtocolViolationError):
            raise_for_status(_response(302))

    def test_unparseable_retry_after_ignored(self):
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_status(_response(429, headers={"retry-after": "soon"}))
        assert exc_info.value.retry_after is None


class TestJsonBody:
    def test_decodes(self):
        assert json_body(_response(200, content=b'{"id": "x"}')) == {"id": "x"}

    def test_invalid_json(self):
        with pytest.raises(ProtocolViolationError):
            json_body(_response(200, content=b"<html>"))


class TestTransport:
    @pytest.mark.asyncio
    async def test_get_with_params(self, network, transport):
        network.route("GET", "https://cu.test/result/M", network.json({"Output": "hi"}))

        response = await transport.request(
            "GET", "https://cu.test/result/M", params={"process-id": "P"}
        )

        assert response.json() == {"Output": "hi"}
        sent = network.requests[0]
        assert sent.url.params["process-id"] == "P"

    @pytest.mark.asyncio
    async def test_json_body_is_compact(self, network, transport):
        network.route("POST", "https://cu.test/dry-run", network.json({}))

        await transport.request("POST", "https://cu.test/dry-run", json_data={"Id": "1234"})

        sent = network.requests[0]
        assert sent.content == b'{"Id":"1234"}'
        assert sent.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_status_errors_propagate(self, network, transport):
        network.route("POST", "https://su.test/", network.json({"error": "nope"}, status=422))

        with pytest.raises(RequestRejectedError):
            await transport.request("POST", "https://su.test/", content=b"x")

    @pytest.mark.asyncio
    async def test_connect_error_is_network_error(self, network, transport):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        network.route("GET", "https://down.test", refuse)

        with pytest.raises(NetworkError) as exc_info:
            await transport.request("GET", "https://down.test/x")
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_is_timeout_error(self, network, transport):
        def stall(request):
            raise httpx.ReadTimeout("slow", request=request)

        network.route("GET", "https://slow.test", stall)

        with pytest.raises(TimeoutError):
            await transport.request("GET", "https://slow.test/x")

    @pytest.mark.asyncio
    async def test_signed_request_verifies(self, network, transport, ed_signer):
        network.route("POST", "https://su.test/", network.json({"id": "x"}))
        body = b"envelope bytes"

        await transport.request(
            "POST",
            "https://su.test/",
            content=body,
            headers={"Content-Type": "application/octet-stream"},
            signer=ed_signer,
        )

        sent = network.requests[0]
        assert sent.headers["content-digest"] == content_digest(body)
        assert sent.headers["signature-input"].startswith("sig1=(")
        assert verify_request(
            "POST", sent.url.path, dict(sent.headers), body=sent.content, authority="su.test"
        )

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        transport = Transport(timeout=1.0)
        client = transport.client
        await transport.aclose()
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_borrowed_client_left_open(self, network):
        client = network.client()
        async with Transport(client=client):
            pass
        assert not client.is_closed
        await client.aclose()
