"""In-memory subscription store, mainly for tests and single-process use."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from pushdispatch.errors import SubscriptionNotFound
from pushdispatch.logging_config import endpoint_prefix, get_logger
from pushdispatch.models import Subscription
from pushdispatch.store.base import SubscriptionStore

logger = get_logger(__name__)


class InMemorySubscriptionStore(SubscriptionStore):
    """
    Dict-backed store.

    A single lock guards both the primary map and the endpoint index so
    readers never observe one updated without the other.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_identity: dict[tuple[str, str], Subscription] = {}
        self._by_endpoint: dict[str, set[tuple[str, str]]] = {}

    async def put(self, subscription: Subscription) -> Subscription:
        identity = (subscription.owner, subscription.endpoint)
        with self._lock:
            self._by_identity[identity] = subscription
            self._by_endpoint.setdefault(subscription.endpoint, set()).add(identity)
        return subscription

    async def get(self, owner: str, now: datetime | None = None) -> list[Subscription]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            subs = [s for (o, _), s in self._by_identity.items() if o == owner]
            expired = [s for s in subs if s.is_expired(now)]
            for sub in expired:
                self._remove(sub.owner, sub.endpoint)

        if expired:
            logger.info("subscriptions_expired", owner=owner, count=len(expired))
        return [s for s in subs if not s.is_expired(now)]

    async def invalidate(self, endpoint: str) -> int:
        with self._lock:
            identities = self._by_endpoint.pop(endpoint, set())
            for identity in identities:
                self._by_identity.pop(identity, None)

        if not identities:
            raise SubscriptionNotFound(endpoint)
        logger.info("subscription_invalidated", endpoint=endpoint_prefix(endpoint), removed=len(identities))
        return len(identities)

    async def prune_expired(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [s for s in self._by_identity.values() if s.is_expired(now)]
            for sub in expired:
                self._remove(sub.owner, sub.endpoint)
        return len(expired)

    def _remove(self, owner: str, endpoint: str) -> None:
        """Must hold _lock."""
        identity = (owner, endpoint)
        self._by_identity.pop(identity, None)
        identities = self._by_endpoint.get(endpoint)
        if identities is not None:
            identities.discard(identity)
            if not identities:
                del self._by_endpoint[endpoint]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_identity)
