"""
Fan-out of booking events to Server-Sent Events listeners.

Architecture:
- One ``EventBroadcaster`` per process wrapping a ``broadcaster.Broadcast``
  (in-memory backend by default); it lives on ``app.state`` and is connected
  and disconnected by the bookings app lifespan
- Every connected client holds a ``Subscription`` (``subscribe()`` context)
  on the channel for as long as it stays; ``stream()`` wraps that for SSE
- ``publish`` is called from sync endpoints running in the worker thread
  pool and hops onto the event loop with ``anyio.from_thread.run``

Delivery is best-effort and at-most-once. A listener that falls more than
``max_queue_size`` events behind is dropped; nothing is persisted or
replayed, so a client that (re)connects should re-fetch current state.
"""
from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict

import anyio.from_thread
from broadcaster import Broadcast
from pydantic import BaseModel

logger = logging.getLogger(__name__)

CHANNEL = "bookings"

Message = Dict[str, str]


class EventKind(str, Enum):
    CONNECTED = "connected"
    BOOKING_CREATED = "booking-created"
    BOOKING_CANCELLED = "booking-cancelled"
    BOOKING_RESCHEDULED = "booking-rescheduled"


class Subscription:
    """Handle for one connected listener."""

    def __init__(self, subscriber: AsyncIterable[Any]) -> None:
        self.id = uuid.uuid4().hex
        self.pending = 0
        self.dropped = False
        self._subscriber = subscriber

    async def messages(self) -> AsyncIterator[Message]:
        """``connected`` first, then published events until unsubscribed."""
        yield _encode(EventKind.CONNECTED, json.dumps({"message": "Connected to booking stream"}))
        async for event in self._subscriber:
            if self.dropped:
                return
            self.pending = max(self.pending - 1, 0)
            yield json.loads(event.message)


class EventBroadcaster:
    def __init__(self, url: str = "memory://", max_queue_size: int = 100) -> None:
        self._broadcast = Broadcast(url)
        self._max_queue_size = max_queue_size
        # Only touched from the event loop thread.
        self._subscriptions: Dict[str, Subscription] = {}

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    async def connect(self) -> None:
        await self._broadcast.connect()

    async def disconnect(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self.unsubscribe(subscription)
        await self._broadcast.disconnect()

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscription]:
        """Register a listener for as long as the context is open."""
        async with self._broadcast.subscribe(CHANNEL) as subscriber:
            subscription = Subscription(subscriber)
            self._subscriptions[subscription.id] = subscription
            logger.info("SSE client connected. Total clients: %d", len(self._subscriptions))
            try:
                yield subscription
            finally:
                self.unsubscribe(subscription)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a listener from the registry; idempotent. Its messages stop at the next event."""
        subscription.dropped = True
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.info("SSE client disconnected. Total clients: %d", len(self._subscriptions))

    async def stream(self) -> AsyncIterator[Message]:
        """Yield ``connected`` and then every booking event until the listener goes away."""
        async with self.subscribe() as subscription:
            async for message in subscription.messages():
                yield message

    def publish(self, kind: EventKind, payload: BaseModel) -> int:
        """Publish from a worker thread; returns how many listeners the event was queued for."""
        return anyio.from_thread.run(self.publish_async, kind, payload)

    async def publish_async(self, kind: EventKind, payload: BaseModel) -> int:
        subscriptions = list(self._subscriptions.values())
        logger.info("Broadcasting %s to %d clients", kind.value, len(subscriptions))
        await self._broadcast.publish(CHANNEL, json.dumps(_encode(kind, payload.model_dump_json())))

        delivered = 0
        for subscription in subscriptions:
            subscription.pending += 1
            if subscription.pending > self._max_queue_size:
                logger.warning("SSE listener %s fell behind, dropping it", subscription.id)
                self.unsubscribe(subscription)
            else:
                delivered += 1
        return delivered


def _encode(kind: EventKind, data: str) -> Message:
    return {"event": kind.value, "data": data}
