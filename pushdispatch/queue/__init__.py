"""Dispatch queue: topic collapsing, retry policy and the delivery scheduler."""

from pushdispatch.queue.backoff import RetryPolicy
from pushdispatch.queue.collapse import OfferResult, OfferStatus, TopicCollapseTable
from pushdispatch.queue.scheduler import (
    DeliveryEvent,
    DeliveryHandle,
    DeliveryScheduler,
)

__all__ = [
    "RetryPolicy",
    "OfferResult",
    "OfferStatus",
    "TopicCollapseTable",
    "DeliveryEvent",
    "DeliveryHandle",
    "DeliveryScheduler",
]
