"""
Booking Lifecycle Engine
========================

Orchestrates every status change of a booking::

    pending ──accept──> accepted ──start(OTP)──> in_progress ──complete──> completed
       │
       └──cancel──> cancelled

Each mutation follows the same shape:

1. Read the booking (``BookingNotFound`` if absent).
2. Apply the transition to an in-memory copy; the entity's state machine
   raises ``InvalidTransition`` for any edge not in the table.
3. Persist the changed fields with a compare-and-swap on ``version``.
   A concurrent writer makes the write fail with
   ``ConcurrentModification`` and nothing is stored, so a second driver
   can never overwrite the first driver's assignment.
4. Publish a ``BookingEvent`` for subscribers.

The engine trusts the identity fields it is handed; callers are
responsible for authenticating customers and drivers.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Optional

from parcelride.domain.entities import (
    Booking,
    CustomerInfo,
    DriverInfo,
    Location,
    utcnow,
)
from parcelride.domain.enums import BookingStatus
from parcelride.domain.errors import (
    ActiveBookingExists,
    BookingNotFound,
    ConcurrentModification,
    DuplicateBooking,
    IdempotencyKeyConflict,
    InvalidOTP,
    InvalidTransition,
)
from parcelride.domain.otp import generate_otp
from parcelride.domain.pricing import PricingEngine, TripQuote
from parcelride.infrastructure.events import BookingEvent, EventBus, NullEventBus
from parcelride.infrastructure.repositories import BookingRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverEarnings:
    driver_id: str
    completed_trips: int
    total_earnings: int
    today_earnings: int


class BookingLifecycle:
    def __init__(
        self,
        repository: BookingRepository,
        pricing: PricingEngine | None = None,
        events: EventBus | None = None,
        otp_factory: Callable[[], str] = generate_otp,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.pricing = pricing or PricingEngine()
        self.events = events or NullEventBus()
        self.otp_factory = otp_factory
        self.clock = clock

    # ── Commands ──────────────────────────────────────────────────────

    def quote(
        self, pickup: Location, delivery: Location, vehicle_type: str
    ) -> TripQuote:
        return self.pricing.quote_trip(pickup, delivery, vehicle_type)

    async def create_booking(
        self,
        customer: CustomerInfo,
        pickup: Location,
        delivery: Location,
        vehicle_type: str,
        idempotency_key: Optional[str] = None,
    ) -> Booking:
        if idempotency_key:
            existing = await self._replay(
                idempotency_key, customer, pickup, delivery, vehicle_type
            )
            if existing:
                return existing

        # Validates the route and the tier before anything touches storage
        quote = self.quote(pickup, delivery, vehicle_type)

        booking = Booking(
            id=uuid.uuid4().hex,
            customer_id=customer.id,
            customer_name=customer.name,
            customer_phone=customer.phone,
            pickup=pickup,
            delivery=delivery,
            vehicle_type=vehicle_type,
            distance=quote.distance,
            base_price=quote.price.base_price,
            distance_charge=quote.price.distance_charge,
            total_price=quote.price.total_price,
            otp=self.otp_factory(),
            created_at=self.clock(),
            idempotency_key=idempotency_key,
        )
        try:
            # The repository enforces one open booking per customer atomically
            await self.repository.append(booking)
        except (ActiveBookingExists, DuplicateBooking):
            if not idempotency_key:
                raise
            # A concurrent retry with the same key may have won the insert
            existing = await self._replay(
                idempotency_key, customer, pickup, delivery, vehicle_type
            )
            if existing is None:
                raise
            return existing
        logger.info(
            "Booking %s created: %s -> %s, %s, %.1f km, total %d",
            booking.id, pickup.id, delivery.id, vehicle_type,
            booking.distance, booking.total_price,
        )
        await self.events.publish(BookingEvent.from_booking(booking))
        return booking

    async def accept_booking(self, booking_id: str, driver: DriverInfo) -> Booking:
        booking = await self._get(booking_id)

        # Retried accept whose first response was lost
        if booking.driver_id == driver.id and booking.status == BookingStatus.ACCEPTED:
            return booking

        draft = replace(booking)
        draft.transition_to(BookingStatus.ACCEPTED)
        draft.assign_driver(driver)
        return await self._commit(
            booking,
            status=draft.status,
            driver_id=draft.driver_id,
            driver_name=draft.driver_name,
            driver_phone=draft.driver_phone,
            driver_vehicle_number=draft.driver_vehicle_number,
        )

    async def start_trip(self, booking_id: str, otp: str) -> Booking:
        booking = await self._get(booking_id)
        if not booking.can_transition_to(BookingStatus.IN_PROGRESS):
            raise InvalidTransition(
                f"Cannot start trip for booking {booking_id} "
                f"in status {booking.status.value}"
            )
        if otp != booking.otp:
            logger.warning("Rejected OTP for booking %s", booking_id)
            raise InvalidOTP(booking_id)

        return await self._commit(booking, status=BookingStatus.IN_PROGRESS)

    async def complete_trip(self, booking_id: str) -> Booking:
        booking = await self._get(booking_id)
        draft = replace(booking)
        draft.transition_to(BookingStatus.COMPLETED)
        return await self._commit(
            booking, status=draft.status, completed_at=self.clock()
        )

    async def cancel_booking(self, booking_id: str) -> Booking:
        booking = await self._get(booking_id)
        draft = replace(booking)
        draft.transition_to(BookingStatus.CANCELLED)
        return await self._commit(booking, status=draft.status)

    # ── Queries ───────────────────────────────────────────────────────

    async def get_booking(self, booking_id: str) -> Booking:
        return await self._get(booking_id)

    async def get_customer_bookings(self, customer_id: str) -> list[Booking]:
        return await self.repository.query_by_customer(customer_id)

    async def get_active_customer_booking(self, customer_id: str) -> Optional[Booking]:
        return await self.repository.query_active_by_customer(customer_id)

    async def get_driver_requests(self, vehicle_type: str) -> list[Booking]:
        return await self.repository.query_pending_by_vehicle_type(vehicle_type)

    async def get_active_driver_booking(self, driver_id: str) -> Optional[Booking]:
        return await self.repository.query_active_by_driver(driver_id)

    async def get_driver_earnings(
        self, driver_id: str, today: Optional[date] = None
    ) -> DriverEarnings:
        today = today or self.clock().date()
        completed = await self.repository.query_completed_by_driver(driver_id)
        return DriverEarnings(
            driver_id=driver_id,
            completed_trips=len(completed),
            total_earnings=sum(b.total_price for b in completed),
            today_earnings=sum(
                b.total_price
                for b in completed
                if b.completed_at and b.completed_at.date() == today
            ),
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _replay(
        self,
        key: str,
        customer: CustomerInfo,
        pickup: Location,
        delivery: Location,
        vehicle_type: str,
    ) -> Optional[Booking]:
        """Booking already stored under *key*, if it is the same request."""
        existing = await self.repository.find_by_idempotency_key(key)
        if existing is None:
            return None
        if (
            existing.customer_id != customer.id
            or existing.pickup.id != pickup.id
            or existing.delivery.id != delivery.id
            or existing.vehicle_type != vehicle_type
        ):
            logger.warning(
                "Idempotency key %s reused by customer %s for a different booking",
                key, customer.id,
            )
            raise IdempotencyKeyConflict(key)
        return existing

    async def _get(self, booking_id: str) -> Booking:
        booking = await self.repository.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def _commit(self, booking: Booking, **patch) -> Booking:
        try:
            updated = await self.repository.update(
                booking.id, patch, expected_version=booking.version
            )
        except ConcurrentModification:
            logger.warning(
                "Lost update on booking %s (version %d)", booking.id, booking.version
            )
            raise
        logger.info(
            "Booking %s: %s -> %s",
            booking.id, booking.status.value, updated.status.value,
        )
        await self.events.publish(BookingEvent.from_booking(updated))
        return updated
