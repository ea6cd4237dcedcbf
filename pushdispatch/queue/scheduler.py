"""
Delivery Scheduler

Accepts send requests and drives every (message, subscription) pair through

    PENDING -> SIGNING -> SENDING -> DELIVERED
                             |-> RETRYING -> SIGNING -> SENDING ...
                             |-> EXPIRED
                             |-> REJECTED

with SUPERSEDED reachable from any non-terminal state when a newer message
with the same topic arrives for the same subscription.

Each dispatch runs as its own asyncio task. The only shared state is the
subscription store and the collapse table; concurrent HTTP exchanges are
bounded by the transport pool size.

Usage:
    from pushdispatch.queue.scheduler import DeliveryScheduler

    async with DeliveryScheduler(store, keypair) as scheduler:
        handles = await scheduler.send("alice", Message(b"...", topic="chat-42", ttl=60))
        for handle in handles:
            outcome = await handle.wait()   # None if superseded
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pushdispatch.config import DispatchConfig, build_keypair
from pushdispatch.errors import PayloadTooLarge, SignError, SubscriptionNotFound
from pushdispatch.logging_config import endpoint_prefix, get_logger
from pushdispatch.models import (
    DeliveryAttempt,
    DeliveryOutcome,
    Dispatch,
    DispatchState,
    Message,
    OutcomeStatus,
    RejectReason,
    Subscription,
)
from pushdispatch.push.signer import ApplicationKeypair, SignedRequest, sign
from pushdispatch.push.transport import PushTransport, TransportOutcome
from pushdispatch.queue.backoff import RetryPolicy
from pushdispatch.queue.collapse import TopicCollapseTable
from pushdispatch.store import create_store
from pushdispatch.store.base import SubscriptionStore

logger = get_logger(__name__)

Signer = Callable[[Message, Subscription, ApplicationKeypair | None, float], SignedRequest]

_OUTCOME_STATES = {
    OutcomeStatus.DELIVERED: DispatchState.DELIVERED,
    OutcomeStatus.REJECTED: DispatchState.REJECTED,
    OutcomeStatus.EXPIRED: DispatchState.EXPIRED,
}


@dataclass
class DeliveryEvent:
    """Emitted once per terminal outcome of an accepted dispatch."""

    message_id: str
    subscription_id: str
    owner: str
    endpoint: str
    outcome: DeliveryOutcome


EventListener = Callable[[DeliveryEvent], None]


class DeliveryHandle:
    """
    Caller's view of one dispatch.

    Resolves exactly once with a DeliveryOutcome, or with None when the
    message was superseded by a newer one for the same topic.
    """

    def __init__(self, dispatch: Dispatch):
        self._dispatch = dispatch
        self._done = asyncio.Event()

    @property
    def message_id(self) -> str:
        return self._dispatch.message.id

    @property
    def subscription(self) -> Subscription:
        return self._dispatch.subscription

    @property
    def state(self) -> DispatchState:
        return self._dispatch.state

    @property
    def outcome(self) -> DeliveryOutcome | None:
        return self._dispatch.outcome

    @property
    def superseded(self) -> bool:
        return self._dispatch.state == DispatchState.SUPERSEDED

    @property
    def attempts(self) -> list[DeliveryAttempt]:
        return list(self._dispatch.attempts)

    def done(self) -> bool:
        return self._done.is_set()

    async def wait(self, timeout: float | None = None) -> DeliveryOutcome | None:
        if timeout is None:
            await self._done.wait()
        else:
            await asyncio.wait_for(self._done.wait(), timeout)
        return self._dispatch.outcome

    def _settle(self) -> None:
        self._done.set()


class DeliveryScheduler:
    """
    Push dispatch engine.

    Args:
        store: Subscription store used to resolve owners and invalidate
            dead endpoints
        keypair: Application VAPID keypair (None rejects every dispatch
            with sign_error)
        transport: Push transport; one is created from config if omitted
        config: Dispatch configuration
        collapse_table: Topic collapse table; a fresh one if omitted
        retry_policy: Backoff policy; built from config if omitted
        clock: Returns the current time in epoch seconds
        sleep: Awaitable sleep used for retry waits
        signer: Signing function, defaults to pushdispatch.push.signer.sign
    """

    def __init__(
        self,
        store: SubscriptionStore,
        keypair: ApplicationKeypair | None,
        transport: PushTransport | None = None,
        config: DispatchConfig | None = None,
        collapse_table: TopicCollapseTable | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        signer: Signer = sign,
    ):
        self.config = config or DispatchConfig()
        self.store = store
        self.keypair = keypair
        self._owns_transport = transport is None
        self.transport = transport or PushTransport(self.config.transport)
        self.collapse_table = collapse_table or TopicCollapseTable()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config.retry)
        self._clock = clock
        self._sleep = sleep
        self._signer = signer

        self._slots = asyncio.Semaphore(self.config.transport.pool_size)
        self._handles: dict[tuple[str, str], DeliveryHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[EventListener] = []

    @classmethod
    def from_config(
        cls,
        config: DispatchConfig,
        store: SubscriptionStore | None = None,
        **kwargs,
    ) -> "DeliveryScheduler":
        """
        Build a scheduler with the configured keypair and store backend.

        Raises:
            VapidKeyError: If the configured VAPID key is missing or invalid
        """
        return cls(
            store=store or create_store(config),
            keypair=build_keypair(config),
            config=config,
            **kwargs,
        )

    async def __aenter__(self) -> "DeliveryScheduler":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- Caller API -------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback invoked with every terminal DeliveryEvent."""
        self._listeners.append(listener)

    async def send(self, owner: str, message: Message) -> list[DeliveryHandle]:
        """
        Deliver ``message`` to every current subscription of ``owner``.

        Returns:
            One handle per subscription; empty when the owner has none
        """
        subscriptions = await self.store.get(owner, now=self._now_datetime())
        if not subscriptions:
            logger.info("no_subscriptions", owner=owner, message_id=message.id)
            return []
        return [await self.send_to(sub, message) for sub in subscriptions]

    async def send_to(self, subscription: Subscription, message: Message) -> DeliveryHandle:
        """Deliver ``message`` to a single subscription."""
        if message.created_at is None:
            message.created_at = self._clock()

        dispatch = Dispatch(message=message, subscription=subscription)
        existing = self._handles.get(dispatch.key)
        if existing is not None:
            return existing

        handle = DeliveryHandle(dispatch)

        if subscription.is_expired(self._now_datetime()):
            await self._invalidate(subscription)
            self._finish(dispatch, handle, OutcomeStatus.REJECTED, reason=RejectReason.SUBSCRIPTION_EXPIRED.value)
            return handle

        offer = self.collapse_table.offer(subscription.id, message)
        if offer.previous is not None:
            self._supersede(subscription.id, offer.previous)

        self._handles[dispatch.key] = handle
        task = asyncio.create_task(self._run(dispatch, handle), name=f"dispatch-{message.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def drain(self) -> None:
        """Wait until every in-flight dispatch has reached a final state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._owns_transport:
            await self.transport.aclose()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # --- Dispatch worker --------------------------------------------------------

    async def _run(self, dispatch: Dispatch, handle: DeliveryHandle) -> None:
        try:
            await self._drive(dispatch, handle)
        except Exception:
            logger.exception(
                "dispatch_failed_unexpectedly",
                message_id=dispatch.message.id,
                endpoint=endpoint_prefix(dispatch.subscription.endpoint),
                state=dispatch.state.value,
            )
            if not dispatch.state.is_terminal:
                self._finish(dispatch, handle, OutcomeStatus.REJECTED, reason=RejectReason.INTERNAL_ERROR.value)
        finally:
            if self._handles.get(dispatch.key) is handle:
                del self._handles[dispatch.key]

    async def _drive(self, dispatch: Dispatch, handle: DeliveryHandle) -> None:
        message = dispatch.message
        subscription = dispatch.subscription

        while True:
            if self._check_superseded(dispatch, handle):
                return
            if self._deadline_passed(dispatch, message.remaining_ttl(self._clock())):
                self._finish(dispatch, handle, OutcomeStatus.EXPIRED, reason="ttl_exceeded")
                return

            dispatch.transition(DispatchState.SIGNING)
            try:
                signed = self._signer(message, subscription, self.keypair, self._clock())
            except SignError as e:
                logger.error(
                    "dispatch_sign_failed",
                    message_id=message.id,
                    endpoint=endpoint_prefix(subscription.endpoint),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._finish(dispatch, handle, OutcomeStatus.REJECTED, reason=RejectReason.SIGN_ERROR.value)
                return

            async with self._slots:
                if self._check_superseded(dispatch, handle):
                    return
                remaining = message.remaining_ttl(self._clock())
                if self._deadline_passed(dispatch, remaining):
                    self._finish(dispatch, handle, OutcomeStatus.EXPIRED, reason="ttl_exceeded")
                    return

                dispatch.transition(DispatchState.SENDING)
                attempt = DeliveryAttempt(
                    number=dispatch.attempt_count + 1,
                    started_at=self._clock(),
                    ttl_header=max(0, min(message.ttl, int(remaining))),
                )
                dispatch.attempts.append(attempt)

                try:
                    result = await self.transport.send(
                        subscription,
                        signed,
                        ttl=attempt.ttl_header,
                        urgency=message.urgency,
                        topic=message.topic,
                    )
                except PayloadTooLarge as e:
                    attempt.outcome = TransportOutcome.PERMANENT.value
                    attempt.error = e
                    if dispatch.state != DispatchState.SUPERSEDED:
                        self._finish(
                            dispatch, handle, OutcomeStatus.REJECTED, reason=RejectReason.PAYLOAD_TOO_LARGE.value
                        )
                    return

            attempt.status_code = result.status_code
            attempt.outcome = result.outcome.value
            attempt.error = result.to_error()

            if dispatch.state == DispatchState.SUPERSEDED:
                logger.info(
                    "dispatch_result_dropped",
                    message_id=message.id,
                    endpoint=endpoint_prefix(subscription.endpoint),
                    outcome=result.outcome.value,
                )
                return

            if result.outcome == TransportOutcome.DELIVERED:
                self._finish(dispatch, handle, OutcomeStatus.DELIVERED, status_code=result.status_code)
                return

            if result.outcome == TransportOutcome.PERMANENT:
                if result.invalidates_subscription:
                    await self._invalidate(subscription)
                if dispatch.state == DispatchState.SUPERSEDED:
                    return
                self._finish(
                    dispatch, handle, OutcomeStatus.REJECTED, reason=result.reason, status_code=result.status_code
                )
                return

            delay = self.retry_policy.next_delay(
                dispatch.attempt_count,
                message.remaining_ttl(self._clock()),
                retry_after=result.retry_after,
            )
            if delay is None:
                self._finish(
                    dispatch, handle, OutcomeStatus.EXPIRED, reason=result.reason, status_code=result.status_code
                )
                return

            dispatch.transition(DispatchState.RETRYING)
            logger.info(
                "dispatch_retrying",
                message_id=message.id,
                endpoint=endpoint_prefix(subscription.endpoint),
                attempt=dispatch.attempt_count,
                delay=round(delay, 3),
                reason=result.reason,
            )
            await self._backoff(handle, delay)

    async def _backoff(self, handle: DeliveryHandle, delay: float) -> None:
        """Sleep before the next attempt; wake early if the dispatch is superseded."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        settled = asyncio.ensure_future(handle._done.wait())
        try:
            done, _ = await asyncio.wait({sleeper, settled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            settled.cancel()
        if sleeper in done:
            sleeper.result()

    # --- State helpers ----------------------------------------------------------

    @staticmethod
    def _deadline_passed(dispatch: Dispatch, remaining: float) -> bool:
        # A zero-TTL message gets exactly one immediate attempt.
        if dispatch.message.ttl == 0 and dispatch.attempt_count == 0:
            return False
        return remaining <= 0

    def _check_superseded(self, dispatch: Dispatch, handle: DeliveryHandle) -> bool:
        """Re-check the collapse table; True if this dispatch must not send."""
        if dispatch.state == DispatchState.SUPERSEDED:
            return True
        if self.collapse_table.is_current(dispatch.subscription.id, dispatch.message):
            return False
        dispatch.transition(DispatchState.SUPERSEDED)
        handle._settle()
        return True

    def _supersede(self, subscription_id: str, previous: Message) -> None:
        handle = self._handles.pop((subscription_id, previous.id), None)
        if handle is None:
            return
        dispatch = handle._dispatch
        if dispatch.state.is_terminal:
            return
        dispatch.transition(DispatchState.SUPERSEDED)
        handle._settle()
        logger.info(
            "dispatch_superseded",
            message_id=previous.id,
            subscription_id=subscription_id,
            topic=previous.topic,
            was=dispatch.attempts[-1].outcome if dispatch.attempts else None,
        )

    def _finish(
        self,
        dispatch: Dispatch,
        handle: DeliveryHandle,
        status: OutcomeStatus,
        reason: str | None = None,
        status_code: int | None = None,
    ) -> None:
        dispatch.transition(_OUTCOME_STATES[status])
        dispatch.outcome = DeliveryOutcome(
            status=status,
            reason=reason,
            status_code=status_code,
            attempts=dispatch.attempt_count,
        )
        self.collapse_table.complete(dispatch.subscription.id, dispatch.message)
        handle._settle()

        log = logger.info if status == OutcomeStatus.DELIVERED else logger.warning
        log(
            f"dispatch_{status.value}",
            message_id=dispatch.message.id,
            endpoint=endpoint_prefix(dispatch.subscription.endpoint),
            reason=reason,
            status_code=status_code,
            attempts=dispatch.attempt_count,
        )

        self._emit(DeliveryEvent(
            message_id=dispatch.message.id,
            subscription_id=dispatch.subscription.id,
            owner=dispatch.subscription.owner,
            endpoint=dispatch.subscription.endpoint,
            outcome=dispatch.outcome,
        ))

    def _emit(self, event: DeliveryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("delivery_listener_failed", message_id=event.message_id)

    async def _invalidate(self, subscription: Subscription) -> None:
        """Remove a dead subscription. Failures never change the outcome."""
        try:
            await self.store.invalidate(subscription.endpoint)
        except SubscriptionNotFound:
            logger.debug("subscription_already_removed", endpoint=endpoint_prefix(subscription.endpoint))
        except Exception:
            logger.exception("subscription_invalidation_failed", endpoint=endpoint_prefix(subscription.endpoint))

    def _now_datetime(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)


__all__ = ["DeliveryEvent", "DeliveryHandle", "DeliveryScheduler", "EventListener"]
