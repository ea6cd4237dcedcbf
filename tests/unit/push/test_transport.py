"""Tests for pushdispatch/push/transport.py"""

from datetime import datetime, timezone

import httpx
import pytest

from pushdispatch.config import TransportConfig
from pushdispatch.errors import PayloadTooLarge, PermanentTransportError, RetryableTransportError
from pushdispatch.models import Urgency
from pushdispatch.push.signer import SignedRequest
from pushdispatch.push.transport import (
    PushTransport,
    TransportOutcome,
    classify_response,
    parse_retry_after,
)


class TestClassifyResponse:
    @pytest.mark.parametrize("status", [200, 201, 202])
    def test_success_variants(self, status):
        result = classify_response(status)
        assert result.outcome == TransportOutcome.DELIVERED
        assert result.delivered

    @pytest.mark.parametrize("status,reason", [(404, "not_found"), (410, "gone")])
    def test_invalid_subscription(self, status, reason):
        result = classify_response(status)
        assert result.outcome == TransportOutcome.PERMANENT
        assert result.reason == reason
        assert result.invalidates_subscription

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable(self, status):
        result = classify_response(status)
        assert result.outcome == TransportOutcome.RETRYABLE
        assert not result.invalidates_subscription

    def test_payload_too_large(self):
        result = classify_response(413)
        assert result.outcome == TransportOutcome.PERMANENT
        assert result.reason == "payload_too_large"
        assert not result.invalidates_subscription

    @pytest.mark.parametrize("status", [400, 401, 403])
    def test_other_client_errors_permanent_without_invalidation(self, status):
        result = classify_response(status)
        assert result.outcome == TransportOutcome.PERMANENT
        assert not result.invalidates_subscription

    def test_retry_after_captured(self):
        result = classify_response(429, {"Retry-After": "30"})
        assert result.retry_after == 30.0

    def test_non_ascii_digit_retry_after_still_retryable(self):
        result = classify_response(503, {"Retry-After": "\u00b2"})
        assert result.outcome == TransportOutcome.RETRYABLE
        assert result.retry_after is None

    def test_to_error(self):
        assert classify_response(201).to_error() is None
        assert isinstance(classify_response(503).to_error(), RetryableTransportError)
        error = classify_response(410).to_error()
        assert isinstance(error, PermanentTransportError)
        assert error.invalidates_subscription
        assert error.status_code == 410


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("120") == 120.0

    def test_http_date(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Mon, 01 Jan 2024 12:00:45 GMT", now=now) == 45.0

    def test_date_in_past(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon", "\u00b2"])
    def test_unusable(self, value):
        assert parse_retry_after(value) is None


class TestPushTransport:
    def _transport(self, handler, **config) -> PushTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return PushTransport(TransportConfig(**config), client=client)

    @pytest.mark.asyncio
    async def test_wire_headers(self, make_subscription):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        transport = self._transport(handler)
        signed = SignedRequest({"Authorization": "vapid t=a,k=b"}, b"ciphertext")
        result = await transport.send(
            make_subscription(), signed, ttl=42, urgency=Urgency.HIGH, topic="chat-42"
        )

        assert result.delivered
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == make_subscription().endpoint
        assert request.headers["TTL"] == "42"
        assert request.headers["Urgency"] == "high"
        assert request.headers["Topic"] == "chat-42"
        assert request.headers["Authorization"] == "vapid t=a,k=b"
        assert request.content == b"ciphertext"

    @pytest.mark.asyncio
    async def test_no_topic_header_without_topic(self, make_subscription):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        transport = self._transport(handler)
        await transport.send(make_subscription(), SignedRequest({}, b""), ttl=0)
        assert "Topic" not in seen[0].headers
        assert seen[0].headers["TTL"] == "0"

    @pytest.mark.asyncio
    async def test_payload_too_large_fails_before_sending(self, make_subscription):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        transport = self._transport(handler, max_payload_bytes=16)
        with pytest.raises(PayloadTooLarge) as exc_info:
            await transport.send(make_subscription(), SignedRequest({}, b"x" * 17), ttl=60)

        assert exc_info.value.size == 17
        assert exc_info.value.limit == 16
        assert seen == []

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self, make_subscription):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        transport = self._transport(handler)
        result = await transport.send(make_subscription(), SignedRequest({}, b""), ttl=60)

        assert result.outcome == TransportOutcome.RETRYABLE
        assert result.status_code is None
        assert "ConnectError" in result.reason

    @pytest.mark.asyncio
    async def test_gone_response(self, make_subscription):
        transport = self._transport(lambda request: httpx.Response(410))
        result = await transport.send(make_subscription(), SignedRequest({}, b""), ttl=60)

        assert result.outcome == TransportOutcome.PERMANENT
        assert result.invalidates_subscription

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, make_subscription):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(201)))
        transport = PushTransport(client=client)
        await transport.aclose()
        assert not client.is_closed
        await client.aclose()
