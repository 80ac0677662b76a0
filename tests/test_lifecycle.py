"""Booking lifecycle engine tests, run against both repositories."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from parcelride.domain.entities import CustomerInfo
from parcelride.domain.enums import BookingStatus
from parcelride.domain.errors import (
    ActiveBookingExists,
    BookingError,
    BookingNotFound,
    ConcurrentModification,
    IdempotencyKeyConflict,
    InvalidOTP,
    InvalidRoute,
    InvalidTransition,
    UnknownVehicleTier,
)
from parcelride.domain.otp import generate_otp
from parcelride.infrastructure.repositories import (
    KeyValueBookingRepository,
    SqlBookingRepository,
)
from parcelride.infrastructure.storage import InMemoryKeyValueStore
from parcelride.services.lifecycle import BookingLifecycle
from tests.factories import (
    CUSTOMER,
    DRIVER,
    OTHER_CUSTOMER,
    OTHER_DRIVER,
    POINT_A,
    POINT_B,
    POINT_C,
    POINT_D,
    TEST_OTP,
    stale_lookups,
)


class _SlowStore(InMemoryKeyValueStore):
    """Yields to the event loop on every read, like a network round trip."""

    async def get(self, key):
        await asyncio.sleep(0.01)
        return await super().get(key)


async def _accepted(lifecycle, vehicle_type="truck"):
    booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, vehicle_type)
    return await lifecycle.accept_booking(booking.id, DRIVER)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_prices_and_persists(self, lifecycle, repository):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "truck")

        assert booking.status == BookingStatus.PENDING
        assert booking.distance == 12.0
        assert booking.base_price == 200
        assert booking.distance_charge == 120
        assert booking.total_price == 320
        assert booking.otp == TEST_OTP
        assert booking.customer_name == CUSTOMER.name
        assert booking.driver_id is None
        assert await repository.find_by_id(booking.id) == booking

    @pytest.mark.asyncio
    async def test_short_trip_floored_at_minimum(self, lifecycle):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_C, POINT_D, "auto")
        assert booking.distance == 2.5
        assert booking.total_price == 75

    @pytest.mark.asyncio
    async def test_generated_otp_is_four_digits(self, repository):
        lifecycle = BookingLifecycle(repository, otp_factory=generate_otp)
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        assert len(booking.otp) == 4 and booking.otp.isdigit()

    @pytest.mark.asyncio
    async def test_same_pickup_and_delivery_never_reaches_repository(
        self, lifecycle, repository
    ):
        with pytest.raises(InvalidRoute):
            await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_A, "auto")
        assert await repository.query_by_customer(CUSTOMER.id) == []

    @pytest.mark.asyncio
    async def test_unknown_tier_rejected(self, lifecycle, repository):
        with pytest.raises(UnknownVehicleTier):
            await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "helicopter")
        assert await repository.query_by_customer(CUSTOMER.id) == []

    @pytest.mark.asyncio
    async def test_second_open_booking_rejected(self, lifecycle):
        first = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        with pytest.raises(ActiveBookingExists) as exc_info:
            await lifecycle.create_booking(CUSTOMER, POINT_C, POINT_D, "auto")
        assert exc_info.value.booking_id == first.id

    @pytest.mark.asyncio
    async def test_new_booking_allowed_after_cancel(self, lifecycle):
        first = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        await lifecycle.cancel_booking(first.id)
        second = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_existing(self, lifecycle):
        b1 = await lifecycle.create_booking(
            CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
        )
        b2 = await lifecycle.create_booking(
            CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
        )
        assert b1.id == b2.id
        assert len(await lifecycle.get_customer_bookings(CUSTOMER.id)) == 1

    @pytest.mark.asyncio
    async def test_idempotency_key_of_another_customer_rejected(self, lifecycle):
        await lifecycle.create_booking(
            CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
        )
        with pytest.raises(IdempotencyKeyConflict):
            await lifecycle.create_booking(
                OTHER_CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
            )
        assert await lifecycle.get_customer_bookings(OTHER_CUSTOMER.id) == []

    @pytest.mark.asyncio
    async def test_idempotency_key_with_different_request_rejected(self, lifecycle):
        first = await lifecycle.create_booking(
            CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
        )
        await lifecycle.cancel_booking(first.id)
        with pytest.raises(IdempotencyKeyConflict):
            await lifecycle.create_booking(
                CUSTOMER, POINT_A, POINT_B, "truck", idempotency_key="retry-1"
            )


class TestTransitions:
    @pytest.mark.asyncio
    async def test_end_to_end_truck_trip(self, repository):
        completed_at = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)
        lifecycle = BookingLifecycle(
            repository, otp_factory=lambda: TEST_OTP, clock=lambda: completed_at
        )

        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "truck")
        assert (booking.base_price, booking.distance_charge, booking.total_price) == (
            200, 120, 320,
        )

        accepted = await lifecycle.accept_booking(booking.id, DRIVER)
        assert accepted.status == BookingStatus.ACCEPTED
        assert accepted.driver_name == DRIVER.name
        assert accepted.driver_vehicle_number == DRIVER.vehicle_number

        with pytest.raises(InvalidOTP):
            await lifecycle.start_trip(booking.id, "0000")
        assert (await lifecycle.get_booking(booking.id)).status == BookingStatus.ACCEPTED

        started = await lifecycle.start_trip(booking.id, TEST_OTP)
        assert started.status == BookingStatus.IN_PROGRESS

        done = await lifecycle.complete_trip(booking.id)
        assert done.status == BookingStatus.COMPLETED
        assert done.completed_at == completed_at
        # Fixed at creation
        assert done.total_price == 320
        assert done.otp == booking.otp

    @pytest.mark.asyncio
    async def test_second_start_with_correct_otp_fails(self, lifecycle):
        booking = await _accepted(lifecycle)
        await lifecycle.start_trip(booking.id, TEST_OTP)
        with pytest.raises(InvalidTransition):
            await lifecycle.start_trip(booking.id, TEST_OTP)

    @pytest.mark.asyncio
    async def test_start_before_accept_fails(self, lifecycle):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        with pytest.raises(InvalidTransition):
            await lifecycle.start_trip(booking.id, TEST_OTP)

    @pytest.mark.asyncio
    async def test_otp_is_exact_string_match(self, lifecycle):
        booking = await _accepted(lifecycle)
        for attempt in (" 4321", "4321 ", "04321", ""):
            with pytest.raises(InvalidOTP):
                await lifecycle.start_trip(booking.id, attempt)
        assert (await lifecycle.get_booking(booking.id)).version == booking.version

    @pytest.mark.asyncio
    async def test_cancel_then_accept_fails(self, lifecycle):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        cancelled = await lifecycle.cancel_booking(booking.id)
        assert cancelled.status == BookingStatus.CANCELLED

        with pytest.raises(InvalidTransition):
            await lifecycle.accept_booking(booking.id, DRIVER)
        stored = await lifecycle.get_booking(booking.id)
        assert stored.status == BookingStatus.CANCELLED
        assert stored.driver_id is None

    @pytest.mark.asyncio
    async def test_cancel_after_accept_fails(self, lifecycle):
        booking = await _accepted(lifecycle)
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel_booking(booking.id)

    @pytest.mark.asyncio
    async def test_cancel_twice_fails(self, lifecycle):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        await lifecycle.cancel_booking(booking.id)
        with pytest.raises(InvalidTransition):
            await lifecycle.cancel_booking(booking.id)

    @pytest.mark.asyncio
    async def test_complete_requires_in_progress(self, lifecycle):
        booking = await _accepted(lifecycle)
        with pytest.raises(InvalidTransition):
            await lifecycle.complete_trip(booking.id)
        assert (await lifecycle.get_booking(booking.id)).completed_at is None

    @pytest.mark.asyncio
    async def test_complete_twice_fails(self, lifecycle):
        booking = await _accepted(lifecycle)
        await lifecycle.start_trip(booking.id, TEST_OTP)
        await lifecycle.complete_trip(booking.id)
        with pytest.raises(InvalidTransition):
            await lifecycle.complete_trip(booking.id)

    @pytest.mark.asyncio
    async def test_second_driver_cannot_take_accepted_booking(self, lifecycle):
        booking = await _accepted(lifecycle)
        with pytest.raises(InvalidTransition):
            await lifecycle.accept_booking(booking.id, OTHER_DRIVER)
        assert (await lifecycle.get_booking(booking.id)).driver_id == DRIVER.id

    @pytest.mark.asyncio
    async def test_accept_retry_by_same_driver_is_idempotent(self, lifecycle):
        booking = await _accepted(lifecycle)
        again = await lifecycle.accept_booking(booking.id, DRIVER)
        assert again.version == booking.version
        assert again.status == BookingStatus.ACCEPTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation, args",
        [
            ("accept_booking", (DRIVER,)),
            ("start_trip", (TEST_OTP,)),
            ("complete_trip", ()),
            ("cancel_booking", ()),
            ("get_booking", ()),
        ],
    )
    async def test_missing_booking_raises_not_found(self, lifecycle, operation, args):
        with pytest.raises(BookingNotFound):
            await getattr(lifecycle, operation)("missing", *args)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_racing_accepts_assign_exactly_one_driver(self, kv_store):
        lifecycle = BookingLifecycle(KeyValueBookingRepository(kv_store))
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")

        results = await asyncio.gather(
            lifecycle.accept_booking(booking.id, DRIVER),
            lifecycle.accept_booking(booking.id, OTHER_DRIVER),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BookingError)]
        assert len(winners) == 1 and len(losers) == 1

        stored = await lifecycle.get_booking(booking.id)
        assert stored.driver_id == winners[0].driver_id
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_racing_creates_leave_one_open_booking(self):
        lifecycle = BookingLifecycle(KeyValueBookingRepository(_SlowStore()))

        results = await asyncio.gather(
            lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto"),
            lifecycle.create_booking(CUSTOMER, POINT_C, POINT_D, "truck"),
            return_exceptions=True,
        )
        created = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, ActiveBookingExists)]
        assert len(created) == 1 and len(rejected) == 1

        stored = await lifecycle.get_customer_bookings(CUSTOMER.id)
        assert [b.id for b in stored] == [created[0].id]

    @pytest.mark.asyncio
    async def test_racing_retries_share_one_booking(self):
        lifecycle = BookingLifecycle(KeyValueBookingRepository(_SlowStore()))

        first, second = await asyncio.gather(
            lifecycle.create_booking(
                CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
            ),
            lifecycle.create_booking(
                CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
            ),
        )
        assert first.id == second.id
        assert len(await lifecycle.get_customer_bookings(CUSTOMER.id)) == 1

    @pytest.mark.asyncio
    async def test_sql_retry_losing_the_insert_returns_winner(
        self, session_factory, monkeypatch
    ):
        async with session_factory() as session:
            winner = await BookingLifecycle(SqlBookingRepository(session)).create_booking(
                CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
            )
            await session.commit()

        async with session_factory() as session:
            repo = SqlBookingRepository(session)
            # Both look-ups ran before the winner committed
            stale_lookups(monkeypatch, repo, "find_by_idempotency_key", misses=2)
            stale_lookups(monkeypatch, repo, "query_active_by_customer", misses=1)

            replayed = await BookingLifecycle(repo).create_booking(
                CUSTOMER, POINT_A, POINT_B, "auto", idempotency_key="retry-1"
            )
            assert replayed.id == winner.id
            assert replayed.otp == winner.otp
            assert len(await repo.query_by_customer(CUSTOMER.id)) == 1

    @pytest.mark.asyncio
    async def test_stale_read_loses(self, lifecycle, repository):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        stale = await repository.find_by_id(booking.id)
        await lifecycle.accept_booking(booking.id, DRIVER)

        with pytest.raises(ConcurrentModification):
            await lifecycle._commit(stale, status=BookingStatus.CANCELLED)
        assert (await lifecycle.get_booking(booking.id)).status == BookingStatus.ACCEPTED


class TestQueries:
    @pytest.mark.asyncio
    async def test_active_customer_booking(self, lifecycle):
        assert await lifecycle.get_active_customer_booking(CUSTOMER.id) is None

        first = await _accepted(lifecycle)
        await lifecycle.start_trip(first.id, TEST_OTP)
        await lifecycle.complete_trip(first.id)
        assert await lifecycle.get_active_customer_booking(CUSTOMER.id) is None

        second = await lifecycle.create_booking(CUSTOMER, POINT_C, POINT_D, "auto")
        active = await lifecycle.get_active_customer_booking(CUSTOMER.id)
        assert active.id == second.id

        history = await lifecycle.get_customer_bookings(CUSTOMER.id)
        assert [b.status for b in history] == [
            BookingStatus.COMPLETED,
            BookingStatus.PENDING,
        ]

    @pytest.mark.asyncio
    async def test_driver_requests_only_pending_for_tier(self, lifecycle):
        wanted = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        taken = await lifecycle.create_booking(OTHER_CUSTOMER, POINT_A, POINT_B, "auto")
        await lifecycle.accept_booking(taken.id, DRIVER)
        await lifecycle.create_booking(
            CustomerInfo("cust-3", "Arjun Mehta", "9876543213"), POINT_A, POINT_B, "truck"
        )

        requests = await lifecycle.get_driver_requests("auto")
        assert [b.id for b in requests] == [wanted.id]

    @pytest.mark.asyncio
    async def test_active_driver_booking(self, lifecycle):
        assert await lifecycle.get_active_driver_booking(DRIVER.id) is None
        booking = await _accepted(lifecycle)
        assert (await lifecycle.get_active_driver_booking(DRIVER.id)).id == booking.id

        await lifecycle.start_trip(booking.id, TEST_OTP)
        assert (await lifecycle.get_active_driver_booking(DRIVER.id)).id == booking.id

        await lifecycle.complete_trip(booking.id)
        assert await lifecycle.get_active_driver_booking(DRIVER.id) is None

    @pytest.mark.asyncio
    async def test_driver_earnings(self, repository):
        now = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
        lifecycle = BookingLifecycle(
            repository, otp_factory=lambda: TEST_OTP, clock=lambda: now
        )
        for customer, tier in ((CUSTOMER, "truck"), (OTHER_CUSTOMER, "auto")):
            b = await lifecycle.create_booking(customer, POINT_A, POINT_B, tier)
            await lifecycle.accept_booking(b.id, DRIVER)
            await lifecycle.start_trip(b.id, TEST_OTP)
            await lifecycle.complete_trip(b.id)

        earnings = await lifecycle.get_driver_earnings(DRIVER.id)
        assert earnings.completed_trips == 2
        assert earnings.total_earnings == 320 + 170
        assert earnings.today_earnings == 490

        later = await lifecycle.get_driver_earnings(DRIVER.id, today=date(2026, 10, 20))
        assert later.today_earnings == 0


class TestEvents:
    @pytest.mark.asyncio
    async def test_each_transition_is_published(self, lifecycle, event_bus):
        booking = await lifecycle.create_booking(CUSTOMER, POINT_A, POINT_B, "auto")
        subscription = await event_bus.subscribe(booking.id)

        await lifecycle.accept_booking(booking.id, DRIVER)
        await lifecycle.start_trip(booking.id, TEST_OTP)

        first = await subscription.get(timeout=1)
        second = await subscription.get(timeout=1)
        assert (first.status, first.version) == (BookingStatus.ACCEPTED, 2)
        assert (second.status, second.version) == (BookingStatus.IN_PROGRESS, 3)
        await subscription.close()

    @pytest.mark.asyncio
    async def test_rejected_otp_publishes_nothing(self, lifecycle, event_bus):
        booking = await _accepted(lifecycle)
        subscription = await event_bus.subscribe(booking.id)

        with pytest.raises(InvalidOTP):
            await lifecycle.start_trip(booking.id, "1111")
        assert await subscription.get(timeout=0.01) is None
        await subscription.close()
