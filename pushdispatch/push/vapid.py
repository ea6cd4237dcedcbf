"""
Tool: VAPID Key Management
Purpose: Generate and inspect the application server's VAPID key pair

Usage:
    from pushdispatch.push.vapid import generate_vapid_keys, public_key_from_private

    keys = generate_vapid_keys()
    # Store keys["private_key"] in VAPID_PRIVATE_KEY, hand keys["public_key"]
    # to browsers as applicationServerKey.

Dependencies:
    pip install cryptography py-vapid
"""

import base64
import functools

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from py_vapid import Vapid, VapidException

from pushdispatch.errors import VapidKeyError


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding, as used throughout Web Push."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str | bytes) -> bytes:
    if isinstance(data, str):
        data = data.encode("ascii")
    return base64.urlsafe_b64decode(data + b"=" * (-len(data) % 4))


def generate_vapid_keys() -> dict:
    """
    Generate new VAPID key pair for Web Push.

    Returns:
        {"public_key": str, "private_key": str, "private_key_pem": str}

    Note:
        Store the private key securely in environment variables or vault.
        The public key is shared with clients for subscription.
    """
    # P-256 is the only curve Web Push accepts
    private_key = ec.generate_private_key(ec.SECP256R1())

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")

    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, byteorder="big")

    return {
        "public_key": b64url_encode(public_bytes),
        "private_key": b64url_encode(private_bytes),
        "private_key_pem": private_pem,
    }


@functools.lru_cache(maxsize=32)
def load_vapid(private_key: str) -> Vapid:
    """
    Load a VAPID signer from a raw base64url key, DER (base64url) or PEM.

    Raises:
        VapidKeyError: If the key is empty or cannot be parsed
    """
    if not private_key or not private_key.strip():
        raise VapidKeyError("VAPID private key not configured")

    try:
        if "-----BEGIN" in private_key:
            return Vapid.from_pem(private_key.encode("utf-8"))
        return Vapid.from_string(private_key.strip())
    except (VapidException, ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise VapidKeyError(f"Invalid VAPID private key: {e}") from e


def public_key_from_private(private_key: str) -> str:
    """Return the uncompressed-point base64url public key for a private key."""
    vapid = load_vapid(private_key)
    public_bytes = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return b64url_encode(public_bytes)


__all__ = [
    "b64url_decode",
    "b64url_encode",
    "generate_vapid_keys",
    "load_vapid",
    "public_key_from_private",
]
