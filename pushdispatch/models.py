"""
Tool: Push Dispatch Models
Purpose: Data structures for subscriptions, messages and delivery state

Usage:
    from pushdispatch.models import (
        Subscription,
        Message,
        Urgency,
        DispatchState,
        DeliveryOutcome,
    )
"""

import hashlib
import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pushdispatch.errors import InvalidSubscription, InvalidTransition

# RFC 8030 §5.4: topic is at most 32 characters from the URL-safe base64 alphabet
TOPIC_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,32}$")


class Urgency(str, Enum):
    """Push message urgency (RFC 8030 §5.3)."""

    VERY_LOW = "very-low"
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class DispatchState(str, Enum):
    """Lifecycle of one message being delivered to one subscription."""

    PENDING = "pending"
    SIGNING = "signing"
    SENDING = "sending"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    EXPIRED = "expired"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    DispatchState.DELIVERED,
    DispatchState.EXPIRED,
    DispatchState.REJECTED,
    DispatchState.SUPERSEDED,
})

TRANSITIONS: dict[DispatchState, frozenset[DispatchState]] = {
    DispatchState.PENDING: frozenset({
        DispatchState.SIGNING,
        DispatchState.EXPIRED,
        DispatchState.REJECTED,
        DispatchState.SUPERSEDED,
    }),
    DispatchState.SIGNING: frozenset({
        DispatchState.SENDING,
        DispatchState.EXPIRED,
        DispatchState.REJECTED,
        DispatchState.SUPERSEDED,
    }),
    DispatchState.SENDING: frozenset({
        DispatchState.DELIVERED,
        DispatchState.RETRYING,
        DispatchState.EXPIRED,
        DispatchState.REJECTED,
        DispatchState.SUPERSEDED,
    }),
    DispatchState.RETRYING: frozenset({
        DispatchState.SIGNING,
        DispatchState.SENDING,
        DispatchState.EXPIRED,
        DispatchState.REJECTED,
        DispatchState.SUPERSEDED,
    }),
    DispatchState.DELIVERED: frozenset(),
    DispatchState.EXPIRED: frozenset(),
    DispatchState.REJECTED: frozenset(),
    DispatchState.SUPERSEDED: frozenset(),
}


class OutcomeStatus(str, Enum):
    """Terminal outcome reported to the caller."""

    DELIVERED = "delivered"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RejectReason(str, Enum):
    """Why a dispatch ended Rejected."""

    GONE = "gone"
    NOT_FOUND = "not_found"
    SIGN_ERROR = "sign_error"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    PUSH_SERVICE_REJECTED = "push_service_rejected"
    INTERNAL_ERROR = "internal_error"


@dataclass
class Subscription:
    """
    Web Push subscription.

    Represents a browser's push endpoint plus the client keys used to
    encrypt payloads for it. Identity is owner + endpoint.
    """

    owner: str
    endpoint: str  # Push service URL, opaque to us
    p256dh_key: str  # Client public key for encryption (base64url)
    auth_key: str  # Auth secret (base64url)
    expiration_time: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def id(self) -> str:
        digest = hashlib.sha256(f"{self.owner}\0{self.endpoint}".encode("utf-8")).hexdigest()
        return f"sub_{digest[:16]}"

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the browser-reported expiration time has elapsed."""
        if self.expiration_time is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expiration_time

    def get_subscription_info(self) -> dict:
        """Subscription info in the shape pywebpush expects."""
        return {
            "endpoint": self.endpoint,
            "keys": {
                "p256dh": self.p256dh_key,
                "auth": self.auth_key,
            },
        }

    @classmethod
    def from_payload(cls, owner: str, payload: dict[str, Any]) -> "Subscription":
        """
        Create from the browser's PushSubscription.toJSON() payload.

        Args:
            owner: Application user/device this subscription belongs to
            payload: {"endpoint": str, "keys": {"p256dh": str, "auth": str},
                      "expirationTime": int | None}  (milliseconds since epoch)

        Raises:
            InvalidSubscription: If endpoint or keys are missing, or expirationTime
                is not a millisecond timestamp
        """
        if not owner:
            raise InvalidSubscription("Subscription owner is required")

        endpoint = payload.get("endpoint")
        keys = payload.get("keys") or {}
        if not endpoint or not keys.get("p256dh") or not keys.get("auth"):
            raise InvalidSubscription("Missing required subscription fields")

        expiration = payload.get("expirationTime")
        expiration_time = None
        if expiration is not None:
            try:
                expiration_time = datetime.fromtimestamp(float(expiration) / 1000, tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError) as e:
                raise InvalidSubscription(f"Invalid expirationTime: {expiration!r}") from e

        return cls(
            owner=owner,
            endpoint=endpoint,
            p256dh_key=keys["p256dh"],
            auth_key=keys["auth"],
            expiration_time=expiration_time,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "owner": self.owner,
            "endpoint": self.endpoint,
            "p256dh_key": self.p256dh_key,
            "auth_key": self.auth_key,
            "expiration_time": self.expiration_time.isoformat() if self.expiration_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscription":
        """Create from dict."""
        data = data.copy()
        data.pop("id", None)
        for field_name in ["expiration_time", "created_at"]:
            if isinstance(data.get(field_name), str):
                data[field_name] = datetime.fromisoformat(data[field_name])
        return cls(**data)


@dataclass
class Message:
    """
    One logical notification.

    The payload is delivered verbatim (after encryption); messages sharing
    a topic for the same subscription replace each other until delivered.
    """

    payload: bytes
    topic: str | None = None
    ttl: int = 86400  # seconds
    urgency: Urgency = Urgency.NORMAL
    id: str = field(default_factory=lambda: Message.generate_id())
    created_at: float | None = None  # stamped by the scheduler on acceptance

    def __post_init__(self) -> None:
        if isinstance(self.payload, str):
            self.payload = self.payload.encode("utf-8")
        if self.topic == "":
            self.topic = None
        if self.topic is not None and not TOPIC_PATTERN.match(self.topic):
            raise ValueError(
                f"Invalid topic {self.topic!r}: use 1-32 URL-safe base64 characters"
            )
        if self.ttl < 0:
            raise ValueError("ttl must be >= 0")
        if not isinstance(self.urgency, Urgency):
            self.urgency = Urgency(self.urgency)

    @staticmethod
    def generate_id() -> str:
        """Generate a new message ID."""
        return f"msg_{uuid.uuid4().hex[:12]}"

    @classmethod
    def from_json(cls, data: dict[str, Any], **kwargs: Any) -> "Message":
        """Build a message whose payload is the JSON encoding of ``data``."""
        return cls(payload=json.dumps(data).encode("utf-8"), **kwargs)

    def deadline(self) -> float:
        """Absolute time after which the message is no longer worth sending."""
        if self.created_at is None:
            raise ValueError("Message has not been accepted yet")
        return self.created_at + self.ttl

    def remaining_ttl(self, now: float) -> float:
        return self.deadline() - now


@dataclass
class DeliveryOutcome:
    """Terminal result of delivering one message to one subscription."""

    status: OutcomeStatus
    reason: str | None = None
    status_code: int | None = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.DELIVERED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class DeliveryAttempt:
    """One HTTP exchange with the push service. Kept only for the retry window."""

    number: int
    started_at: float
    ttl_header: int
    status_code: int | None = None
    outcome: str | None = None  # "delivered" | "retryable" | "permanent"
    error: Exception | None = None


@dataclass
class Dispatch:
    """
    Delivery state for one (message, subscription) pair.

    State changes go through ``transition`` so every edge is checked
    against TRANSITIONS.
    """

    message: Message
    subscription: Subscription
    state: DispatchState = DispatchState.PENDING
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    outcome: DeliveryOutcome | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.subscription.id, self.message.id)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def transition(self, new_state: DispatchState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.message.id}: cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
