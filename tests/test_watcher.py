"""Booking watcher: push notifications with polling fallback."""

from __future__ import annotations

import asyncio

import pytest

from parcelride.domain.enums import BookingStatus
from parcelride.domain.errors import BookingNotFound
from parcelride.infrastructure.events import BookingEvent, InMemoryEventBus, NullEventBus
from parcelride.infrastructure.repositories import KeyValueBookingRepository
from parcelride.services.lifecycle import BookingLifecycle
from parcelride.workers.watcher import watch_booking
from tests.factories import CUSTOMER, DRIVER, POINT_A, POINT_B, TEST_OTP


async def _next(stream):
    return await stream.__anext__()


@pytest.fixture
def kv_lifecycle(kv_store, event_bus):
    return BookingLifecycle(
        KeyValueBookingRepository(kv_store),
        events=event_bus,
        otp_factory=lambda: TEST_OTP,
    )


@pytest.mark.asyncio
async def test_event_wakes_watcher_before_poll_interval(kv_lifecycle, event_bus):
    booking = await kv_lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
    stream = watch_booking(booking.id, kv_lifecycle.get_booking, event_bus, interval=30)

    first = await stream.__anext__()
    assert first.status == BookingStatus.PENDING

    await kv_lifecycle.accept_booking(booking.id, DRIVER)
    second = await asyncio.wait_for(_next(stream), timeout=1)
    assert second.status == BookingStatus.ACCEPTED
    assert second.driver_id == DRIVER.id
    await stream.aclose()


@pytest.mark.asyncio
async def test_polling_fallback_without_events(kv_store):
    # Engine publishes nowhere; only polling can notice the change
    lifecycle = BookingLifecycle(KeyValueBookingRepository(kv_store))
    booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
    stream = watch_booking(booking.id, lifecycle.get_booking, NullEventBus(), interval=0.01)

    await stream.__anext__()
    await lifecycle.cancel_booking(booking.id)
    latest = await asyncio.wait_for(_next(stream), timeout=1)
    assert latest.status == BookingStatus.CANCELLED
    await stream.aclose()


@pytest.mark.asyncio
async def test_stream_ends_after_terminal_status(kv_lifecycle, event_bus):
    booking = await kv_lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
    await kv_lifecycle.accept_booking(booking.id, DRIVER)
    await kv_lifecycle.start_trip(booking.id, TEST_OTP)

    async def drive():
        await asyncio.sleep(0.01)
        await kv_lifecycle.complete_trip(booking.id)

    task = asyncio.create_task(drive())
    seen = [
        b.status
        async for b in watch_booking(
            booking.id, kv_lifecycle.get_booking, event_bus, interval=0.05
        )
    ]
    await task
    assert seen == [BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED]
    # Subscription released
    assert not event_bus._subscribers[booking.id]


@pytest.mark.asyncio
async def test_missing_booking_raises(event_bus):
    async def fetch(booking_id):
        raise BookingNotFound(booking_id)

    with pytest.raises(BookingNotFound):
        async for _ in watch_booking("missing", fetch, event_bus, interval=0.01):
            pass
    assert not event_bus._subscribers["missing"]


@pytest.mark.asyncio
async def test_stale_event_is_ignored(kv_lifecycle):
    bus = InMemoryEventBus()
    booking = await kv_lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
    calls = 0

    async def counting_fetch(booking_id):
        nonlocal calls
        calls += 1
        return await kv_lifecycle.get_booking(booking_id)

    stream = watch_booking(booking.id, counting_fetch, bus, interval=30)
    await stream.__anext__()

    # Replayed creation event: same version, no re-read
    await bus.publish(BookingEvent.from_booking(booking))
    pending = asyncio.create_task(_next(stream))
    await asyncio.sleep(0.01)
    assert calls == 1

    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    await stream.aclose()
