"""Shared test fixtures for pushdispatch tests.

This module provides common fixtures used across all test modules:
- A generated VAPID keypair and browser subscription keys
- A fake clock whose sleep advances time instantly
- A scripted push service built on httpx.MockTransport

Usage:
    @pytest.mark.asyncio
    async def test_something(scheduler_factory, push_service):
        push_service.script(201)
        scheduler = scheduler_factory()
        ...
"""

import asyncio
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from pushdispatch.config import DispatchConfig, RetryConfig, TransportConfig
from pushdispatch.models import Message, Subscription
from pushdispatch.push.signer import ApplicationKeypair, SignedRequest
from pushdispatch.push.transport import PushTransport
from pushdispatch.push.vapid import b64url_encode, generate_vapid_keys
from pushdispatch.queue.backoff import RetryPolicy
from pushdispatch.queue.scheduler import DeliveryScheduler
from pushdispatch.store.memory import InMemorySubscriptionStore


# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

START_TIME = 1_700_000_000.0
ENDPOINT = "https://push.example.net/wpush/v2/abc123"


# ─────────────────────────────────────────────────────────────────────────────
# Key Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def vapid_keys() -> dict:
    """A freshly generated application VAPID key pair."""
    return generate_vapid_keys()


@pytest.fixture
def keypair(vapid_keys: dict) -> ApplicationKeypair:
    return ApplicationKeypair.load(vapid_keys["private_key"], "mailto:ops@example.com")


@pytest.fixture(scope="session")
def browser_keys() -> dict:
    """Client-side keys as a browser would put them in a PushSubscription.

    Returns:
        dict with p256dh, auth and the receiver's private key object
    """
    receiver = ec.generate_private_key(ec.SECP256R1())
    public_bytes = receiver.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    auth = os.urandom(16)
    return {
        "p256dh": b64url_encode(public_bytes),
        "auth": b64url_encode(auth),
        "auth_bytes": auth,
        "private_key": receiver,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Subscription Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_owner() -> str:
    """Standard test owner ID."""
    return "test_user_123"


@pytest.fixture
def make_subscription(browser_keys: dict, mock_owner: str) -> Callable[..., Subscription]:
    """Factory for subscriptions with valid client keys."""

    def _make(
        endpoint: str = ENDPOINT,
        owner: str | None = None,
        expiration_time: datetime | None = None,
    ) -> Subscription:
        return Subscription(
            owner=owner or mock_owner,
            endpoint=endpoint,
            p256dh_key=browser_keys["p256dh"],
            auth_key=browser_keys["auth"],
            expiration_time=expiration_time,
        )

    return _make


@pytest.fixture
def subscription_payload(browser_keys: dict) -> dict:
    """A PushSubscription.toJSON() payload."""
    return {
        "endpoint": ENDPOINT,
        "expirationTime": None,
        "keys": {"p256dh": browser_keys["p256dh"], "auth": browser_keys["auth"]},
    }


@pytest.fixture
def memory_store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


# ─────────────────────────────────────────────────────────────────────────────
# Time Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeClock:
    """Epoch-seconds clock whose sleep() advances time instead of waiting."""

    def __init__(self, start: float = START_TIME):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ─────────────────────────────────────────────────────────────────────────────
# Push Service Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class PushServiceStub:
    """Scripted push service.

    Responses are consumed in order; the last one repeats once the script
    runs out. An entry may be a status code, an httpx.Response, an
    exception instance to raise, or an async callable taking the request.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._script: list = [201]
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def script(self, *responses) -> None:
        self._script = list(responses)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        entry = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return await entry(request)
        if isinstance(entry, httpx.Response):
            return entry
        return httpx.Response(entry)

    @property
    def ttl_headers(self) -> list[int]:
        return [int(r.headers["TTL"]) for r in self.requests]

    @property
    def bodies(self) -> list[bytes]:
        return [r.content for r in self.requests]


@pytest.fixture
def push_service() -> PushServiceStub:
    return PushServiceStub()


def plaintext_signer(message: Message, subscription: Subscription, keypair, now: float) -> SignedRequest:
    """Signer stand-in that skips encryption so tests can read bodies."""
    return SignedRequest(headers={"Authorization": "vapid t=test,k=test"}, body=message.payload)


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    """Config with jitter disabled so backoff delays are exact."""
    return DispatchConfig(
        retry=RetryConfig(max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=60.0, jitter=0.0),
        transport=TransportConfig(pool_size=4, max_payload_bytes=4096),
    )


@pytest.fixture
def scheduler_factory(memory_store, keypair, push_service, clock, dispatch_config):
    """Build a DeliveryScheduler wired to the fake clock and push service."""

    def _make(**overrides) -> DeliveryScheduler:
        config = overrides.pop("config", dispatch_config)
        kwargs = {
            "store": memory_store,
            "keypair": keypair,
            "transport": PushTransport(config.transport, client=push_service.client),
            "config": config,
            "retry_policy": RetryPolicy.from_config(config.retry),
            "clock": clock,
            "sleep": clock.sleep,
            "signer": plaintext_signer,
        }
        kwargs.update(overrides)
        return DeliveryScheduler(**kwargs)

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Path Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path to a fresh SQLite database file."""
    return tmp_path / "data" / "push_dispatch.db"
