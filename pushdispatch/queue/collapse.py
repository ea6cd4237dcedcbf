"""
Topic Collapse Table

At most one undelivered message per (subscription, topic). A newer offer
for the same key atomically replaces the pending one; the replaced message
is reported back so the scheduler can drop its dispatch. Messages without
a topic never collapse and are tracked one entry per message.

Entries live in shards, each guarded by its own lock, so offers for
different keys never contend on a single global lock. Nothing inside a
lock awaits, which makes the table usable from asyncio tasks and threads
alike.

Usage:
    from pushdispatch.queue.collapse import TopicCollapseTable

    table = TopicCollapseTable()
    result = table.offer(subscription.id, message)
    if result.previous is not None:
        ...  # drop the older dispatch
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Hashable

from pushdispatch.models import Message


class OfferStatus(str, Enum):
    ACCEPTED = "accepted"
    SUPERSEDED = "superseded"  # accepted, and an older pending message was replaced


@dataclass
class OfferResult:
    status: OfferStatus
    previous: Message | None = None


def _collapse_key(subscription_id: str, message: Message) -> Hashable:
    if message.topic:
        return (subscription_id, "topic", message.topic)
    return (subscription_id, "message", message.id)


class TopicCollapseTable:
    """Sharded (subscription, topic) -> pending message map."""

    def __init__(self, shards: int = 16):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._locks = [threading.Lock() for _ in range(shards)]
        self._entries: list[dict[Hashable, Message]] = [{} for _ in range(shards)]

    def _shard(self, key: Hashable) -> int:
        return hash(key) % len(self._locks)

    def offer(self, subscription_id: str, message: Message) -> OfferResult:
        """
        Make ``message`` the pending message for its key.

        Returns:
            OfferResult(ACCEPTED) when nothing was pending, or
            OfferResult(SUPERSEDED, previous) when an older message was replaced
        """
        key = _collapse_key(subscription_id, message)
        shard = self._shard(key)
        with self._locks[shard]:
            previous = self._entries[shard].get(key)
            self._entries[shard][key] = message

        if previous is not None and previous.id != message.id:
            return OfferResult(OfferStatus.SUPERSEDED, previous=previous)
        return OfferResult(OfferStatus.ACCEPTED)

    def is_current(self, subscription_id: str, message: Message) -> bool:
        """True while ``message`` is still the pending one for its key."""
        key = _collapse_key(subscription_id, message)
        shard = self._shard(key)
        with self._locks[shard]:
            current = self._entries[shard].get(key)
        return current is not None and current.id == message.id

    def complete(self, subscription_id: str, message: Message) -> bool:
        """
        Remove the entry if it still holds ``message``.

        Called on delivery, rejection or expiry. A newer message that
        replaced this one is left untouched.

        Returns:
            True if an entry was removed
        """
        key = _collapse_key(subscription_id, message)
        shard = self._shard(key)
        with self._locks[shard]:
            current = self._entries[shard].get(key)
            if current is not None and current.id == message.id:
                del self._entries[shard][key]
                return True
        return False

    def pending(self, subscription_id: str, topic: str) -> Message | None:
        """The pending message for a (subscription, topic), if any."""
        key = (subscription_id, "topic", topic)
        shard = self._shard(key)
        with self._locks[shard]:
            return self._entries[shard].get(key)

    def __len__(self) -> int:
        total = 0
        for lock, entries in zip(self._locks, self._entries):
            with lock:
                total += len(entries)
        return total


__all__ = ["OfferResult", "OfferStatus", "TopicCollapseTable"]
