"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.ACCEPTED, BookingStatus.CANCELLED},
    BookingStatus.ACCEPTED: {BookingStatus.IN_PROGRESS},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

CUSTOMER_ACTIVE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS}
)
DRIVER_ACTIVE_STATUSES = frozenset(
    {BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS}
)
TERMINAL_STATUSES = frozenset(
    status for status, nxt in BOOKING_TRANSITIONS.items() if not nxt
)


class VehicleType(str, enum.Enum):
    AUTO = "auto"
    TEMPO = "tempo"
    TRUCK = "truck"
