"""
Subscription Store Base Class

All backends implement this interface. Every operation is idempotent under
retry: putting the same subscription twice leaves one record, and
invalidating twice raises SubscriptionNotFound the second time, which
callers treat as already cleaned up.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pushdispatch.models import Subscription


class SubscriptionStore(ABC):
    """Durable (owner, endpoint) -> Subscription mapping."""

    @abstractmethod
    async def put(self, subscription: Subscription) -> Subscription:
        """Insert or replace by owner + endpoint identity."""

    @abstractmethod
    async def get(self, owner: str, now: datetime | None = None) -> list[Subscription]:
        """
        Current subscriptions for an owner.

        Subscriptions whose expiration time has passed are removed and
        not returned.
        """

    @abstractmethod
    async def invalidate(self, endpoint: str) -> int:
        """
        Remove every subscription registered for ``endpoint``.

        Returns:
            Number of removed records

        Raises:
            SubscriptionNotFound: If no subscription uses the endpoint
        """

    @abstractmethod
    async def prune_expired(self, now: datetime | None = None) -> int:
        """Remove expired subscriptions across all owners. Returns the count."""

    async def close(self) -> None:
        """Release backend resources."""
