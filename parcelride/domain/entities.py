"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Booking``: enforces valid lifecycle transitions
  (pending -> accepted -> in_progress -> completed, pending -> cancelled).
- ``Booking.assign_driver`` guards the assign-once driver fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import BOOKING_TRANSITIONS, TERMINAL_STATUSES, BookingStatus
from .errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    area: str
    lat: float
    lng: float


@dataclass(frozen=True)
class CustomerInfo:
    id: str
    name: str
    phone: str


@dataclass(frozen=True)
class DriverInfo:
    id: str
    name: str
    phone: str
    vehicle_number: str


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Booking:
    id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    pickup: Location
    delivery: Location
    vehicle_type: str
    distance: float
    base_price: int
    distance_charge: int
    total_price: int
    otp: str
    status: BookingStatus = BookingStatus.PENDING
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_vehicle_number: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in BOOKING_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: BookingStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidTransition(
                f"Cannot transition booking {self.id} from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assign_driver(self, driver: DriverInfo) -> None:
        if self.driver_id is not None:
            raise InvalidTransition(
                f"Booking {self.id} is already assigned to driver {self.driver_id}"
            )
        self.driver_id = driver.id
        self.driver_name = driver.name
        self.driver_phone = driver.phone
        self.driver_vehicle_number = driver.vehicle_number
