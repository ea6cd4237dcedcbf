"""pushdispatch: Web Push dispatch engine

Philosophy:
    The application server only gets one shot at being a good citizen of the
    push service: sign every request freshly, never send stale content, stop
    retrying as soon as the message is no longer worth delivering, and clean
    up subscriptions the push service tells us are gone.

Components:
    store/: Subscription storage (in-memory and SQLite backends)
    push/: VAPID signing, payload encryption, HTTP transport
    queue/: Topic collapsing, retry policy, delivery scheduling

Usage:
    from pushdispatch import DeliveryScheduler, Message, load_config

    config = load_config()
    async with DeliveryScheduler.from_config(config) as scheduler:
        handles = await scheduler.send("alice", Message(b"hi", topic="chat-42"))
        outcomes = [await h.wait() for h in handles]
"""

from pathlib import Path

__version__ = "0.3.0"

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"
DATA_DIR = PROJECT_ROOT / "data"
CONFIG_PATH = ARGS_DIR / "push_dispatch.yaml"

from pushdispatch.config import DispatchConfig, load_config  # noqa: E402
from pushdispatch.models import (  # noqa: E402
    DeliveryOutcome,
    DispatchState,
    Message,
    OutcomeStatus,
    Subscription,
    Urgency,
)
from pushdispatch.push.signer import ApplicationKeypair, sign  # noqa: E402
from pushdispatch.queue.scheduler import DeliveryHandle, DeliveryScheduler  # noqa: E402

__all__ = [
    "PROJECT_ROOT",
    "ARGS_DIR",
    "DATA_DIR",
    "CONFIG_PATH",
    "ApplicationKeypair",
    "DeliveryHandle",
    "DeliveryOutcome",
    "DeliveryScheduler",
    "DispatchConfig",
    "DispatchState",
    "Message",
    "OutcomeStatus",
    "Subscription",
    "Urgency",
    "load_config",
    "sign",
]
