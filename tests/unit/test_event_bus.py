"""Unit tests for the in-process event bus."""
from __future__ import annotations

import asyncio

import pytest

from vault_rebalancer.services.event_bus import (
    EVENT_REBALANCE,
    EVENT_TICK,
    BackpressurePolicy,
    EventBus,
    SubscriptionClosed,
)


class TestPublish:
    @pytest.mark.asyncio
    async def test_delivers_to_every_subscriber(self) -> None:
        bus = EventBus()
        first = bus.subscribe()
        second = bus.subscribe()

        await bus.publish(EVENT_TICK, {"symbol": "weETH"})

        for sub in (first, second):
            event = sub.get_nowait()
            assert event.type == EVENT_TICK
            assert event.data == {"symbol": "weETH"}
            assert event.timestamp

    @pytest.mark.asyncio
    async def test_no_subscribers_is_fine(self) -> None:
        bus = EventBus()
        event = await bus.publish(EVENT_REBALANCE, {"vault_id": "v"})
        assert event.type == EVENT_REBALANCE

    @pytest.mark.asyncio
    async def test_unknown_event_type_raises(self) -> None:
        bus = EventBus()
        with pytest.raises(ValueError):
            await bus.publish("bogus")

    @pytest.mark.asyncio
    async def test_preserves_order(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        for i in range(5):
            await bus.publish(EVENT_TICK, i)
        assert [sub.get_nowait().data for _ in range(5)] == [0, 1, 2, 3, 4]


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_drop_oldest_keeps_newest(self) -> None:
        bus = EventBus(queue_size=2, policy=BackpressurePolicy.DROP_OLDEST)
        sub = bus.subscribe()

        for i in range(5):
            await bus.publish(EVENT_TICK, i)

        assert sub.dropped == 3
        assert [sub.get_nowait().data for _ in range(2)] == [3, 4]

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_starve_fast_one(self) -> None:
        bus = EventBus(queue_size=1)
        slow = bus.subscribe()
        fast = bus.subscribe(maxsize=10)

        for i in range(3):
            await bus.publish(EVENT_TICK, i)

        assert slow.dropped == 2
        assert fast.dropped == 0
        assert fast.queue.qsize() == 3

    @pytest.mark.asyncio
    async def test_block_waits_for_room(self) -> None:
        bus = EventBus(queue_size=1, policy=BackpressurePolicy.BLOCK)
        sub = bus.subscribe()
        await bus.publish(EVENT_TICK, 1)

        pending = asyncio.create_task(bus.publish(EVENT_TICK, 2))
        await asyncio.sleep(0)
        assert not pending.done()

        assert (await sub.get()).data == 1
        await asyncio.wait_for(pending, timeout=1)
        assert (await sub.get()).data == 2
        assert sub.dropped == 0

    def test_invalid_queue_size(self) -> None:
        with pytest.raises(ValueError):
            EventBus(queue_size=0)


class TestSubscription:
    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        assert bus.subscriber_count == 1

        sub.unsubscribe()
        await bus.publish(EVENT_TICK, 1)

        assert bus.subscriber_count == 0
        assert [event async for event in sub] == []

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self) -> None:
        bus = EventBus()
        async with bus.subscribe() as sub:
            await bus.publish(EVENT_TICK, "x")
            assert (await sub.get()).data == "x"
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_async_iteration_drains_after_close(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        await bus.publish(EVENT_TICK, 1)
        await bus.publish(EVENT_TICK, 2)
        sub.unsubscribe()

        received = [event.data async for event in sub]
        assert received == [1, 2]

    @pytest.mark.asyncio
    async def test_unsubscribe_wakes_waiting_consumer(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        received = []

        async def consume() -> None:
            async for event in sub:
                received.append(event.data)

        consumer = asyncio.create_task(consume())
        await bus.publish(EVENT_TICK, 1)
        await asyncio.sleep(0)
        assert not consumer.done()

        sub.unsubscribe()
        await asyncio.wait_for(consumer, timeout=1)
        assert received == [1]

    @pytest.mark.asyncio
    async def test_unsubscribe_wakes_consumer_on_full_queue(self) -> None:
        bus = EventBus(queue_size=2)
        sub = bus.subscribe()
        await bus.publish(EVENT_TICK, 1)
        await bus.publish(EVENT_TICK, 2)

        sub.unsubscribe()

        assert sub.dropped == 1
        assert [event.data async for event in sub] == [2]

    @pytest.mark.asyncio
    async def test_get_after_unsubscribe_raises(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        waiter = asyncio.create_task(sub.get())
        await asyncio.sleep(0)

        sub.unsubscribe()
        sub.unsubscribe()

        with pytest.raises(SubscriptionClosed):
            await asyncio.wait_for(waiter, timeout=1)
        with pytest.raises(SubscriptionClosed):
            await sub.get()

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_blocked_publisher(self) -> None:
        bus = EventBus(queue_size=1, policy=BackpressurePolicy.BLOCK)
        sub = bus.subscribe()
        await bus.publish(EVENT_TICK, 1)

        pending = asyncio.create_task(bus.publish(EVENT_TICK, 2))
        await asyncio.sleep(0)
        assert not pending.done()

        sub.unsubscribe()
        await asyncio.wait_for(pending, timeout=1)
        assert bus.subscriber_count == 0
