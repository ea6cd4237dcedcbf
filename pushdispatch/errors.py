"""
Error taxonomy for push dispatch.

Only SignError and PayloadTooLarge reach callers directly (as Rejected
outcomes). Transport errors are absorbed by the scheduler's retry loop and
surface only as a terminal DeliveryOutcome.
"""


class PushDispatchError(Exception):
    """Base class for all dispatch engine errors."""


class SignError(PushDispatchError):
    """The request could not be signed or encrypted. Never retried."""


class EncryptionError(SignError):
    """Subscription keys (p256dh / auth) are malformed."""


class VapidKeyError(SignError):
    """The application VAPID keypair or subject is absent or invalid."""


class PayloadTooLarge(PushDispatchError):
    """Encrypted body exceeds the push service's maximum payload size."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Encrypted payload is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class RetryableTransportError(PushDispatchError):
    """Network failure, 429 or 5xx from the push service."""

    def __init__(self, reason: str, status_code: int | None = None, retry_after: float | None = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code
        self.retry_after = retry_after


class PermanentTransportError(PushDispatchError):
    """Non-retryable rejection from the push service (404/410 class and friends)."""

    def __init__(self, reason: str, status_code: int | None = None, invalidates_subscription: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code
        self.invalidates_subscription = invalidates_subscription


class SubscriptionNotFound(PushDispatchError):
    """Invalidation of an unknown endpoint. Callers treat it as already cleaned up."""

    def __init__(self, endpoint: str):
        super().__init__(f"No subscription for endpoint {endpoint[:60]}")
        self.endpoint = endpoint


class InvalidSubscription(PushDispatchError, ValueError):
    """A browser subscription payload is missing required fields."""


class InvalidTransition(PushDispatchError):
    """A dispatch was asked to move to a state its current state cannot reach."""


__all__ = [
    "EncryptionError",
    "InvalidSubscription",
    "InvalidTransition",
    "PayloadTooLarge",
    "PermanentTransportError",
    "PushDispatchError",
    "RetryableTransportError",
    "SignError",
    "SubscriptionNotFound",
    "VapidKeyError",
]
