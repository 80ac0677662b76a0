"""
Repository Pattern -- abstracts storage so the lifecycle engine stays
storage-agnostic.

Two implementations share the ``BookingRepository`` interface:

* ``KeyValueBookingRepository`` keeps the whole collection as one JSON
  blob under a fixed key of a ``KeyValueStore``.  Every query re-reads the
  blob; every write runs under the store's lock for that key.  Fine for
  the small, single-device collections it was designed for.
* ``SqlBookingRepository`` stores one row per booking and answers queries
  through indexed columns; each repository receives an ``AsyncSession``
  (unit-of-work).

Both bump ``version`` on every update and reject stale writes when the
caller passes ``expected_version``.  ``append`` refuses a second open
booking for the same customer and a reused id or idempotency key; the
key-value repository checks under the store lock, the SQL repository
relies on unique indexes so racing sessions cannot both commit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import TypeAdapter
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .locks import LockNotAcquired
from .models import BookingModel
from .storage import KeyValueStore
from parcelride.domain.entities import Booking, Location
from parcelride.domain.enums import (
    CUSTOMER_ACTIVE_STATUSES,
    DRIVER_ACTIVE_STATUSES,
    BookingStatus,
)
from parcelride.domain.errors import (
    ActiveBookingExists,
    BookingNotFound,
    ConcurrentModification,
    DuplicateBooking,
    StorageBusy,
)

# Everything else is fixed at creation
MUTABLE_FIELDS = frozenset(
    {
        "status",
        "driver_id",
        "driver_name",
        "driver_phone",
        "driver_vehicle_number",
        "completed_at",
    }
)


def _check_patch(patch: dict[str, Any]) -> None:
    frozen = set(patch) - MUTABLE_FIELDS
    if frozen:
        raise ValueError(f"Immutable booking fields in patch: {sorted(frozen)}")


def _check_append(current: Booking, booking: Booking) -> None:
    if current.id == booking.id:
        raise DuplicateBooking(booking.id)
    if booking.idempotency_key and current.idempotency_key == booking.idempotency_key:
        raise DuplicateBooking(current.id)
    if (
        current.customer_id == booking.customer_id
        and current.status in CUSTOMER_ACTIVE_STATUSES
        and booking.status in CUSTOMER_ACTIVE_STATUSES
    ):
        raise ActiveBookingExists(booking.customer_id, current.id)


class BookingRepository(ABC):
    @abstractmethod
    async def append(self, booking: Booking) -> Booking:
        """Store a new booking.

        Raises ``DuplicateBooking`` when the id or idempotency key is taken
        and ``ActiveBookingExists`` when the customer already has an open
        booking and the new one is open too.
        """

    @abstractmethod
    async def find_by_id(self, booking_id: str) -> Optional[Booking]: ...

    @abstractmethod
    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]: ...

    @abstractmethod
    async def update(
        self,
        booking_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Booking: ...

    @abstractmethod
    async def query_by_customer(self, customer_id: str) -> list[Booking]: ...

    @abstractmethod
    async def query_active_by_customer(
        self, customer_id: str
    ) -> Optional[Booking]: ...

    @abstractmethod
    async def query_pending_by_vehicle_type(
        self, vehicle_type: str
    ) -> list[Booking]: ...

    @abstractmethod
    async def query_active_by_driver(self, driver_id: str) -> Optional[Booking]: ...

    @abstractmethod
    async def query_completed_by_driver(self, driver_id: str) -> list[Booking]: ...


# ── Key-value blob ────────────────────────────────────────────────────


_collection = TypeAdapter(list[Booking])


class KeyValueBookingRepository(BookingRepository):
    KEY = "bookings"

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _load(self) -> list[Booking]:
        raw = await self.store.get(self.KEY)
        if not raw:
            return []
        return _collection.validate_json(raw)

    async def _save(self, bookings: list[Booking]) -> None:
        await self.store.set(self.KEY, _collection.dump_json(bookings).decode())

    @asynccontextmanager
    async def _locked(self):
        try:
            async with self.store.lock(self.KEY):
                yield
        except LockNotAcquired as exc:
            raise StorageBusy(self.KEY) from exc

    async def append(self, booking: Booking) -> Booking:
        async with self._locked():
            bookings = await self._load()
            for current in bookings:
                _check_append(current, booking)
            bookings.append(booking)
            await self._save(bookings)
        return booking

    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        return next((b for b in await self._load() if b.id == booking_id), None)

    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]:
        return next(
            (b for b in await self._load() if b.idempotency_key == key), None
        )

    async def update(
        self,
        booking_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Booking:
        _check_patch(patch)
        async with self._locked():
            bookings = await self._load()
            for idx, current in enumerate(bookings):
                if current.id == booking_id:
                    break
            else:
                raise BookingNotFound(booking_id)

            if expected_version is not None and current.version != expected_version:
                raise ConcurrentModification(booking_id)

            updated = replace(current, **patch, version=current.version + 1)
            bookings[idx] = updated
            await self._save(bookings)
        return updated

    async def query_by_customer(self, customer_id: str) -> list[Booking]:
        return [b for b in await self._load() if b.customer_id == customer_id]

    async def query_active_by_customer(self, customer_id: str) -> Optional[Booking]:
        return next(
            (
                b
                for b in await self._load()
                if b.customer_id == customer_id
                and b.status in CUSTOMER_ACTIVE_STATUSES
            ),
            None,
        )

    async def query_pending_by_vehicle_type(self, vehicle_type: str) -> list[Booking]:
        return [
            b
            for b in await self._load()
            if b.status == BookingStatus.PENDING and b.vehicle_type == vehicle_type
        ]

    async def query_active_by_driver(self, driver_id: str) -> Optional[Booking]:
        return next(
            (
                b
                for b in await self._load()
                if b.driver_id == driver_id and b.status in DRIVER_ACTIVE_STATUSES
            ),
            None,
        )

    async def query_completed_by_driver(self, driver_id: str) -> list[Booking]:
        return [
            b
            for b in await self._load()
            if b.driver_id == driver_id and b.status == BookingStatus.COMPLETED
        ]


# ── SQL ───────────────────────────────────────────────────────────────


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_entity(model: BookingModel) -> Booking:
    return Booking(
        id=model.id,
        customer_id=model.customer_id,
        customer_name=model.customer_name,
        customer_phone=model.customer_phone,
        pickup=Location(**model.pickup),
        delivery=Location(**model.delivery),
        vehicle_type=model.vehicle_type,
        distance=model.distance,
        base_price=model.base_price,
        distance_charge=model.distance_charge,
        total_price=model.total_price,
        otp=model.otp,
        status=BookingStatus(model.status),
        driver_id=model.driver_id,
        driver_name=model.driver_name,
        driver_phone=model.driver_phone,
        driver_vehicle_number=model.driver_vehicle_number,
        created_at=_as_utc(model.created_at),
        completed_at=_as_utc(model.completed_at),
        idempotency_key=model.idempotency_key,
        version=model.version,
    )


def _to_model(booking: Booking) -> BookingModel:
    return BookingModel(
        id=booking.id,
        customer_id=booking.customer_id,
        customer_name=booking.customer_name,
        customer_phone=booking.customer_phone,
        pickup=asdict(booking.pickup),
        delivery=asdict(booking.delivery),
        vehicle_type=booking.vehicle_type,
        distance=booking.distance,
        base_price=booking.base_price,
        distance_charge=booking.distance_charge,
        total_price=booking.total_price,
        otp=booking.otp,
        status=booking.status.value,
        driver_id=booking.driver_id,
        driver_name=booking.driver_name,
        driver_phone=booking.driver_phone,
        driver_vehicle_number=booking.driver_vehicle_number,
        created_at=booking.created_at,
        completed_at=booking.completed_at,
        idempotency_key=booking.idempotency_key,
        version=booking.version,
    )


class SqlBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_model(self, booking_id: str) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _all(self, *criteria) -> list[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(*criteria).order_by(BookingModel.seq)
        )
        return [_to_entity(m) for m in result.scalars().all()]

    async def _first(self, *criteria) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(*criteria)
            .order_by(BookingModel.seq)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _to_entity(model) if model else None

    async def append(self, booking: Booking) -> Booking:
        await self._check_conflicts(booking)
        self.session.add(_to_model(booking))
        try:
            await self.session.flush()
        except IntegrityError:
            # Another session committed a conflicting row after the check;
            # the failed flush leaves nothing of ours to keep
            await self.session.rollback()
            await self._check_conflicts(booking)
            raise
        return booking

    async def _check_conflicts(self, booking: Booking) -> None:
        if await self._get_model(booking.id) is not None:
            raise DuplicateBooking(booking.id)
        if booking.idempotency_key:
            existing = await self.find_by_idempotency_key(booking.idempotency_key)
            if existing is not None:
                raise DuplicateBooking(existing.id)
        if booking.status in CUSTOMER_ACTIVE_STATUSES:
            active = await self.query_active_by_customer(booking.customer_id)
            if active is not None:
                raise ActiveBookingExists(booking.customer_id, active.id)

    async def find_by_id(self, booking_id: str) -> Optional[Booking]:
        model = await self._get_model(booking_id)
        return _to_entity(model) if model else None

    async def find_by_idempotency_key(self, key: str) -> Optional[Booking]:
        return await self._first(BookingModel.idempotency_key == key)

    async def update(
        self,
        booking_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Booking:
        """Compare-and-swap on ``version``; nothing is written on a miss."""
        _check_patch(patch)
        values = {
            k: v.value if isinstance(v, BookingStatus) else v
            for k, v in patch.items()
        }
        stmt = update(BookingModel).where(BookingModel.id == booking_id)
        if expected_version is not None:
            stmt = stmt.where(BookingModel.version == expected_version)
        result = await self.session.execute(
            stmt.values(**values, version=BookingModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if await self._get_model(booking_id) is None:
                raise BookingNotFound(booking_id)
            raise ConcurrentModification(booking_id)

        model = await self._get_model(booking_id)
        return _to_entity(model)

    async def query_by_customer(self, customer_id: str) -> list[Booking]:
        return await self._all(BookingModel.customer_id == customer_id)

    async def query_active_by_customer(self, customer_id: str) -> Optional[Booking]:
        return await self._first(
            BookingModel.customer_id == customer_id,
            BookingModel.status.in_([s.value for s in CUSTOMER_ACTIVE_STATUSES]),
        )

    async def query_pending_by_vehicle_type(self, vehicle_type: str) -> list[Booking]:
        return await self._all(
            BookingModel.vehicle_type == vehicle_type,
            BookingModel.status == BookingStatus.PENDING.value,
        )

    async def query_active_by_driver(self, driver_id: str) -> Optional[Booking]:
        return await self._first(
            BookingModel.driver_id == driver_id,
            BookingModel.status.in_([s.value for s in DRIVER_ACTIVE_STATUSES]),
        )

    async def query_completed_by_driver(self, driver_id: str) -> list[Booking]:
        return await self._all(
            BookingModel.driver_id == driver_id,
            BookingModel.status == BookingStatus.COMPLETED.value,
        )
