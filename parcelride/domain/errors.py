"""
Booking engine error taxonomy.

Every error carries the HTTP status the API layer answers with, so the
FastAPI app can translate all of them through a single exception handler.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for all failures raised by the booking engine."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BookingNotFound(BookingError):
    status_code = 404

    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class InvalidOTP(BookingError):
    """Supplied OTP does not match; the booking is left untouched."""

    status_code = 400

    def __init__(self, booking_id: str):
        super().__init__("Invalid OTP")
        self.booking_id = booking_id


class InvalidTransition(BookingError):
    """Raised when a booking status change violates the state machine."""

    status_code = 409


class UnknownVehicleTier(BookingError):
    status_code = 422

    def __init__(self, vehicle_type: str):
        super().__init__(f"Unknown vehicle type: {vehicle_type}")
        self.vehicle_type = vehicle_type


class UnknownLocation(BookingError):
    status_code = 404

    def __init__(self, location_id: str):
        super().__init__(f"Unknown location: {location_id}")
        self.location_id = location_id


class InvalidRoute(BookingError):
    status_code = 422


class ActiveBookingExists(BookingError):
    status_code = 409

    def __init__(self, customer_id: str, booking_id: str):
        super().__init__(
            f"Customer {customer_id} already has an open booking {booking_id}"
        )
        self.customer_id = customer_id
        self.booking_id = booking_id


class ConcurrentModification(BookingError):
    """The booking changed between read and write; nothing was persisted."""

    status_code = 409

    def __init__(self, booking_id: str):
        super().__init__(
            f"Booking {booking_id} was modified concurrently, retry"
        )
        self.booking_id = booking_id


class DuplicateBooking(BookingError):
    status_code = 409

    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} already exists")
        self.booking_id = booking_id


class IdempotencyKeyConflict(BookingError):
    """The key already belongs to a different customer, route or tier."""

    status_code = 409

    def __init__(self, key: str):
        super().__init__(f"Idempotency key {key} was used for a different booking")
        self.key = key


class StorageBusy(BookingError):
    """The storage lock could not be taken in time; nothing was written."""

    status_code = 503

    def __init__(self, key: str):
        super().__init__(f"Storage for {key} is busy, retry")
        self.key = key
