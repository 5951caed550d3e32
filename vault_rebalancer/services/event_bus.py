"""In-process event bus with bounded per-subscriber queues.

Each subscriber owns an ``asyncio.Queue``. A slow or dead subscriber never
raises into the publisher; what happens when its queue is full is fixed by
the bus's ``BackpressurePolicy``:

- ``DROP_OLDEST``: evict the oldest queued event and count it in
  ``Subscription.dropped``. ``publish`` never waits.
- ``BLOCK``: ``publish`` awaits until the subscriber makes room.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

EVENT_SIMULATION_START = "simulationStart"
EVENT_TICK = "tick"
EVENT_REBALANCE = "rebalance"
EVENT_HEALTH = "health"

EVENT_TYPES = frozenset({EVENT_SIMULATION_START, EVENT_TICK, EVENT_REBALANCE, EVENT_HEALTH})


class BackpressurePolicy(enum.Enum):
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BusEvent:
    type: str
    data: Any = None
    timestamp: str = field(default_factory=_utcnow)


# Queued by ``unsubscribe`` to wake a consumer parked in ``get``.
_CLOSED = object()


class SubscriptionClosed(Exception):
    """``get`` was called on, or was waiting on, an unsubscribed handle."""


class Subscription:
    """Async-iterable handle on one subscriber's queue.

    ``unsubscribe`` leaves already-queued events readable: iteration drains
    them and then stops.
    """

    def __init__(self, bus: EventBus, maxsize: int) -> None:
        self._bus = bus
        self.queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False
        self._closed_event = asyncio.Event()

    async def get(self) -> BusEvent:
        if self.closed and self.queue.empty():
            raise SubscriptionClosed()
        item = await self.queue.get()
        if item is _CLOSED:
            raise SubscriptionClosed()
        return item

    def get_nowait(self) -> BusEvent:
        item = self.queue.get_nowait()
        if item is _CLOSED:
            raise asyncio.QueueEmpty()
        return item

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._closed_event.set()
        self._bus._remove(self)
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BusEvent:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.unsubscribe()


class EventBus:
    """Publish ``simulationStart`` / ``tick`` / ``rebalance`` / ``health`` events."""

    def __init__(
        self,
        queue_size: int = 100,
        policy: BackpressurePolicy = BackpressurePolicy.DROP_OLDEST,
    ) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self.queue_size = queue_size
        self.policy = policy
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        sub = Subscription(self, maxsize or self.queue_size)
        self._subscribers.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    async def publish(self, event_type: str, data: Any = None) -> BusEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event_type}'")
        event = BusEvent(type=event_type, data=data)
        for sub in list(self._subscribers):
            if sub.closed:
                continue
            if self.policy is BackpressurePolicy.BLOCK:
                await self._put_blocking(sub, event)
                continue
            if sub.queue.full():
                sub.queue.get_nowait()
                sub.dropped += 1
                logger.debug("Subscriber queue full, dropped oldest %s event", event_type)
            sub.queue.put_nowait(event)
        return event

    async def _put_blocking(self, sub: Subscription, event: BusEvent) -> None:
        """Wait for room in ``sub``'s queue; give up if it unsubscribes meanwhile."""
        if not sub.queue.full():
            sub.queue.put_nowait(event)
            return
        put = asyncio.ensure_future(sub.queue.put(event))
        closed = asyncio.ensure_future(sub._closed_event.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (put, closed):
                if not task.done():
                    task.cancel()
        if not put.done() or put.cancelled():
            logger.debug("Subscriber closed while publish was blocked, %s event not delivered", event.type)
