"""
Tool: Push Transport Client
Purpose: POST signed, encrypted messages to a push service (RFC 8030)

The status-code mapping in classify_response() is the protocol-compliance
surface: every push service response ends up as Delivered, Retryable or
Permanent.

Usage:
    from pushdispatch.push.transport import PushTransport

    transport = PushTransport(config.transport)
    result = await transport.send(subscription, signed, ttl=60, urgency=Urgency.HIGH)
    await transport.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Mapping

import httpx

from pushdispatch.config import TransportConfig
from pushdispatch.errors import (
    PayloadTooLarge,
    PermanentTransportError,
    PushDispatchError,
    RetryableTransportError,
)
from pushdispatch.logging_config import endpoint_prefix, get_logger
from pushdispatch.models import RejectReason, Subscription, Urgency
from pushdispatch.push.signer import SignedRequest

logger = get_logger(__name__)

# Statuses that mean the subscription itself is dead
INVALID_SUBSCRIPTION_STATUSES = {
    404: RejectReason.NOT_FOUND,
    410: RejectReason.GONE,
}


class TransportOutcome(str, Enum):
    DELIVERED = "delivered"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@dataclass
class TransportResult:
    """Normalized result of one exchange with the push service."""

    outcome: TransportOutcome
    status_code: int | None = None
    reason: str | None = None
    retry_after: float | None = None
    invalidates_subscription: bool = False

    @property
    def delivered(self) -> bool:
        return self.outcome == TransportOutcome.DELIVERED

    def to_error(self) -> PushDispatchError | None:
        """The error this result represents, or None when delivered."""
        if self.outcome == TransportOutcome.RETRYABLE:
            return RetryableTransportError(
                self.reason or "retryable", status_code=self.status_code, retry_after=self.retry_after
            )
        if self.outcome == TransportOutcome.PERMANENT:
            return PermanentTransportError(
                self.reason or "permanent",
                status_code=self.status_code,
                invalidates_subscription=self.invalidates_subscription,
            )
        return None


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if not value:
        return None
    value = value.strip()
    if value.isascii() and value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return max(delta, 0.0)


def classify_response(status_code: int, headers: Mapping[str, str] | None = None) -> TransportResult:
    """
    Map a push service status code to a TransportResult.

    2xx (201 Created, 202 Accepted, ...) -> Delivered
    404 / 410                            -> Permanent, subscription is invalid
    413                                  -> Permanent, payload too large
    429 / 5xx                            -> Retryable (honours Retry-After)
    anything else                        -> Permanent
    """
    headers = headers or {}

    if 200 <= status_code < 300:
        return TransportResult(TransportOutcome.DELIVERED, status_code=status_code)

    if status_code in INVALID_SUBSCRIPTION_STATUSES:
        return TransportResult(
            TransportOutcome.PERMANENT,
            status_code=status_code,
            reason=INVALID_SUBSCRIPTION_STATUSES[status_code].value,
            invalidates_subscription=True,
        )

    if status_code == 413:
        return TransportResult(
            TransportOutcome.PERMANENT,
            status_code=status_code,
            reason=RejectReason.PAYLOAD_TOO_LARGE.value,
        )

    if status_code == 429 or 500 <= status_code < 600:
        return TransportResult(
            TransportOutcome.RETRYABLE,
            status_code=status_code,
            reason=f"http_{status_code}",
            retry_after=parse_retry_after(headers.get("Retry-After")),
        )

    return TransportResult(
        TransportOutcome.PERMANENT,
        status_code=status_code,
        reason=f"http_{status_code}",
    )


class PushTransport:
    """
    Thin async HTTP client for the push service wire protocol.

    One pooled httpx.AsyncClient is shared by every dispatch; its
    connection limit is the transport pool size.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or TransportConfig()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                limits=httpx.Limits(
                    max_connections=self.config.pool_size,
                    max_keepalive_connections=self.config.pool_size,
                ),
            )
        return self._client

    def build_headers(
        self,
        signed: SignedRequest,
        ttl: int,
        urgency: Urgency = Urgency.NORMAL,
        topic: str | None = None,
    ) -> dict[str, str]:
        headers = dict(signed.headers)
        headers["TTL"] = str(max(int(ttl), 0))
        headers["Urgency"] = urgency.value
        if topic:
            headers["Topic"] = topic
        return headers

    async def send(
        self,
        subscription: Subscription,
        signed: SignedRequest,
        ttl: int,
        urgency: Urgency = Urgency.NORMAL,
        topic: str | None = None,
    ) -> TransportResult:
        """
        POST one message to the subscription's endpoint.

        Args:
            subscription: Target subscription
            signed: Output of the signer
            ttl: Remaining TTL in whole seconds
            urgency: Urgency header value
            topic: Topic header value, if any

        Returns:
            TransportResult. Network failures are returned as Retryable.

        Raises:
            PayloadTooLarge: Body exceeds max_payload_bytes (nothing is sent)
        """
        if len(signed.body) > self.config.max_payload_bytes:
            raise PayloadTooLarge(len(signed.body), self.config.max_payload_bytes)

        headers = self.build_headers(signed, ttl=ttl, urgency=urgency, topic=topic)

        try:
            response = await self._get_client().post(
                subscription.endpoint,
                content=signed.body,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.warning(
                "push_network_error",
                endpoint=endpoint_prefix(subscription.endpoint),
                error=type(e).__name__,
            )
            return TransportResult(
                TransportOutcome.RETRYABLE,
                reason=f"network_error: {type(e).__name__}",
            )

        result = classify_response(response.status_code, response.headers)
        logger.debug(
            "push_response",
            endpoint=endpoint_prefix(subscription.endpoint),
            status_code=response.status_code,
            outcome=result.outcome.value,
        )
        return result

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = [
    "PushTransport",
    "TransportOutcome",
    "TransportResult",
    "classify_response",
    "parse_retry_after",
]
