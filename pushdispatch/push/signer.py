"""
Tool: Message Signer
Purpose: VAPID authentication (RFC 8292) and payload encryption (RFC 8291)

Signing is a pure function of (message, subscription, keypair, now): there
is no session state, so it is safe to call from any number of concurrent
dispatches. A fresh assertion is produced for every delivery attempt.

Usage:
    from pushdispatch.push.signer import ApplicationKeypair, sign

    keypair = ApplicationKeypair.load(private_key, "mailto:ops@example.com")
    headers, body = sign(message, subscription, keypair, now=time.time())

Dependencies:
    pip install pywebpush py-vapid cryptography
"""

from dataclasses import dataclass
from typing import NamedTuple
from urllib.parse import urlparse

from cryptography.hazmat.primitives.asymmetric import ec
from py_vapid import VapidException
from pywebpush import WebPusher, WebPushException

from pushdispatch.errors import EncryptionError, SignError, VapidKeyError
from pushdispatch.models import Message, Subscription
from pushdispatch.push.vapid import b64url_decode, load_vapid, public_key_from_private

CONTENT_ENCODING = "aes128gcm"
AUTH_SECRET_LENGTH = 16
MAX_ASSERTION_LIFETIME = 86400  # RFC 8292 §2: exp no more than 24h ahead


@dataclass(frozen=True)
class ApplicationKeypair:
    """The deploying application's VAPID identity."""

    private_key: str
    subject: str  # "mailto:..." or "https://..."
    expiry_seconds: int = 600

    @classmethod
    def load(cls, private_key: str, subject: str, expiry_seconds: int = 600) -> "ApplicationKeypair":
        """
        Build and validate a keypair.

        Raises:
            VapidKeyError: If the key cannot be loaded or the subject is unusable
        """
        if not subject or not subject.startswith(("mailto:", "https:")):
            raise VapidKeyError("VAPID subject must be a mailto: or https: URI")
        if not 0 < expiry_seconds <= MAX_ASSERTION_LIFETIME:
            raise VapidKeyError("VAPID expiry must be between 1 second and 24 hours")
        load_vapid(private_key)
        return cls(private_key=private_key, subject=subject, expiry_seconds=expiry_seconds)

    @property
    def public_key(self) -> str:
        return public_key_from_private(self.private_key)


class SignedRequest(NamedTuple):
    """Headers and encrypted body, ready for the transport."""

    headers: dict[str, str]
    body: bytes


def endpoint_origin(endpoint: str) -> str:
    """The VAPID audience: scheme and host of the push service endpoint."""
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise SignError(f"Endpoint is not an absolute URL: {endpoint[:60]}")
    return f"{parsed.scheme}://{parsed.netloc}"


def validate_subscription_keys(subscription: Subscription) -> None:
    """
    Check the client keys before handing them to the encryption layer.

    Raises:
        EncryptionError: If p256dh is not an uncompressed P-256 point or
            auth is not a 16 byte secret
    """
    try:
        receiver_key = b64url_decode(subscription.p256dh_key)
        auth_secret = b64url_decode(subscription.auth_key)
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Subscription keys are not valid base64url: {e}") from e

    if len(auth_secret) != AUTH_SECRET_LENGTH:
        raise EncryptionError(f"auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(auth_secret)}")

    try:
        ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), receiver_key)
    except ValueError as e:
        raise EncryptionError("p256dh is not a valid P-256 public key") from e


def _encrypt(payload: bytes, subscription: Subscription) -> bytes:
    try:
        encoded = WebPusher(subscription.get_subscription_info()).encode(
            payload, content_encoding=CONTENT_ENCODING
        )
    except (WebPushException, ValueError, TypeError) as e:
        raise EncryptionError(f"Payload encryption failed: {e}") from e
    return encoded["body"]


def sign(
    message: Message,
    subscription: Subscription,
    keypair: ApplicationKeypair | None,
    now: float,
) -> SignedRequest:
    """
    Produce the VAPID Authorization header and the encrypted body.

    Args:
        message: Message to deliver
        subscription: Target subscription
        keypair: Application VAPID keypair
        now: Current time (epoch seconds); bounds the assertion's validity

    Returns:
        SignedRequest(headers, body). An empty payload yields an empty body
        and no encryption headers.

    Raises:
        VapidKeyError: Keypair absent or unusable
        EncryptionError: Subscription keys malformed
    """
    if keypair is None:
        raise VapidKeyError("No application keypair configured")
    validate_subscription_keys(subscription)

    vapid = load_vapid(keypair.private_key)
    claims = {
        "sub": keypair.subject,
        "aud": endpoint_origin(subscription.endpoint),
        "exp": int(now) + keypair.expiry_seconds,
    }
    try:
        headers = dict(vapid.sign(claims))
    except VapidException as e:
        raise VapidKeyError(f"VAPID signing failed: {e}") from e

    body = b""
    if message.payload:
        body = _encrypt(message.payload, subscription)
        headers["Content-Encoding"] = CONTENT_ENCODING
        headers["Content-Type"] = "application/octet-stream"

    return SignedRequest(headers=headers, body=body)


__all__ = [
    "ApplicationKeypair",
    "SignedRequest",
    "endpoint_origin",
    "sign",
    "validate_subscription_keys",
]
