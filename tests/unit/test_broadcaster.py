"""Unit tests for the booking event broadcaster."""
import asyncio
import json
from datetime import datetime

import anyio.to_thread

from common.schemas import BookingEvent
from scheduling.broadcaster import EventBroadcaster, EventKind


def make_event(booking_id: int = 1) -> BookingEvent:
    return BookingEvent(
        booking_id=booking_id,
        room_id=1,
        room_name="Conf A",
        start_time=datetime(2025, 6, 10, 9),
        end_time=datetime(2025, 6, 10, 10),
        user_id=1,
        user_name="Alice",
    )


async def take(stream, count: int):
    received = []
    async for message in stream:
        received.append(message)
        if len(received) == count:
            break
    return received


async def connected(broadcaster):
    await broadcaster.connect()
    return broadcaster


def test_new_listener_gets_connected_event():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        stream = broadcaster.stream()
        message = await asyncio.wait_for(stream.__anext__(), timeout=2)
        count = broadcaster.listener_count
        await stream.aclose()
        await broadcaster.disconnect()
        return message, count

    message, count = asyncio.run(scenario())

    assert count == 1
    assert message["event"] == "connected"
    assert json.loads(message["data"]) == {"message": "Connected to booking stream"}


def test_publish_reaches_every_listener_in_order():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        first, second = broadcaster.stream(), broadcaster.stream()
        await first.__anext__()
        await second.__anext__()
        delivered = await broadcaster.publish_async(EventKind.BOOKING_CREATED, make_event(1))
        await broadcaster.publish_async(EventKind.BOOKING_CANCELLED, make_event(1))
        received = await asyncio.wait_for(asyncio.gather(take(first, 2), take(second, 2)), timeout=2)
        await first.aclose()
        await second.aclose()
        await broadcaster.disconnect()
        return delivered, received

    delivered, received = asyncio.run(scenario())

    assert delivered == 2
    for messages in received:
        assert [message["event"] for message in messages] == ["booking-created", "booking-cancelled"]
        payload = json.loads(messages[0]["data"])
        assert payload["booking_id"] == 1
        assert payload["room_name"] == "Conf A"
        assert payload["user_name"] == "Alice"


def test_publish_from_worker_thread():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        stream = broadcaster.stream()
        await stream.__anext__()
        delivered = await anyio.to_thread.run_sync(broadcaster.publish, EventKind.BOOKING_RESCHEDULED, make_event(5))
        message = await asyncio.wait_for(stream.__anext__(), timeout=2)
        await stream.aclose()
        await broadcaster.disconnect()
        return delivered, message

    delivered, message = asyncio.run(scenario())

    assert delivered == 1
    assert message["event"] == "booking-rescheduled"
    assert json.loads(message["data"])["booking_id"] == 5


def test_publish_without_listeners():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        delivered = await broadcaster.publish_async(EventKind.BOOKING_CREATED, make_event())
        await broadcaster.disconnect()
        return delivered

    assert asyncio.run(scenario()) == 0


def test_listener_that_falls_behind_is_dropped():
    async def scenario():
        broadcaster = await connected(EventBroadcaster(max_queue_size=2))
        slow = broadcaster.stream()
        await slow.__anext__()
        results = [await broadcaster.publish_async(EventKind.BOOKING_CREATED, make_event(n)) for n in (1, 2, 3)]
        count_after_overflow = broadcaster.listener_count
        remaining = await asyncio.wait_for(take(slow, 10), timeout=2)
        await broadcaster.disconnect()
        return results, count_after_overflow, remaining

    results, count_after_overflow, remaining = asyncio.run(scenario())

    assert results == [1, 1, 0]
    assert count_after_overflow == 0
    assert remaining == []


def test_closing_the_stream_removes_the_listener():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        stream = broadcaster.stream()
        await stream.__anext__()
        before = broadcaster.listener_count
        await stream.aclose()
        delivered = await broadcaster.publish_async(EventKind.BOOKING_CREATED, make_event())
        await broadcaster.disconnect()
        return before, broadcaster.listener_count, delivered

    before, after, delivered = asyncio.run(scenario())

    assert before == 1
    assert after == 0
    assert delivered == 0


def test_disconnect_drops_everyone():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        streams = [broadcaster.stream() for _ in range(3)]
        for stream in streams:
            await stream.__anext__()
        before = broadcaster.listener_count
        await broadcaster.disconnect()
        after = broadcaster.listener_count
        for stream in streams:
            await stream.aclose()
        return before, after

    before, after = asyncio.run(scenario())

    assert before == 3
    assert after == 0


def test_unsubscribe_is_idempotent_and_ends_messages():
    async def scenario():
        broadcaster = await connected(EventBroadcaster())
        async with broadcaster.subscribe() as subscription:
            messages = subscription.messages()
            first = await messages.__anext__()
            broadcaster.unsubscribe(subscription)
            broadcaster.unsubscribe(subscription)
            count = broadcaster.listener_count
            await broadcaster.publish_async(EventKind.BOOKING_CREATED, make_event())
            remaining = await asyncio.wait_for(take(messages, 10), timeout=2)
        await broadcaster.disconnect()
        return first, count, remaining

    first, count, remaining = asyncio.run(scenario())

    assert first["event"] == "connected"
    assert count == 0
    assert remaining == []
