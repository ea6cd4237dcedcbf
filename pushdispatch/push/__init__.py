"""Push protocol components: VAPID signing, payload encryption, HTTP transport."""

from pushdispatch.push.signer import (
    ApplicationKeypair,
    SignedRequest,
    sign,
)
from pushdispatch.push.transport import (
    PushTransport,
    TransportOutcome,
    TransportResult,
    classify_response,
)
from pushdispatch.push.vapid import (
    generate_vapid_keys,
    public_key_from_private,
)

__all__ = [
    "ApplicationKeypair",
    "SignedRequest",
    "sign",
    "PushTransport",
    "TransportOutcome",
    "TransportResult",
    "classify_response",
    "generate_vapid_keys",
    "public_key_from_private",
]
