"""
Shared test fixtures.

SQL tests use a throw-away SQLite file per test (via aiosqlite) so they
run without Docker / PostgreSQL / Redis.  Key-value tests use the
in-memory store.  Repository-backed fixtures are parametrised so the same
tests run against both ``BookingRepository`` implementations.
"""

from __future__ import annotations

import itertools
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from parcelride.domain.entities import Booking
from parcelride.infrastructure.database import Base
from parcelride.infrastructure.events import InMemoryEventBus
from parcelride.infrastructure.repositories import (
    KeyValueBookingRepository,
    SqlBookingRepository,
)
from parcelride.infrastructure.storage import InMemoryKeyValueStore
from parcelride.services.lifecycle import BookingLifecycle
from tests.factories import CUSTOMER, POINT_A, POINT_B, TEST_OTP


# ── SQL (SQLite file per test) ────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh SQLite file, yield a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# ── Repositories / engine ─────────────────────────────────────────────


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest_asyncio.fixture(params=["kv", "sql"])
async def repository(request, kv_store, tmp_path):
    if request.param == "kv":
        yield KeyValueBookingRepository(kv_store)
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'repo.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_sessionmaker(engine, expire_on_commit=False)() as session:
        yield SqlBookingRepository(session)
    await engine.dispose()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def lifecycle(repository, event_bus) -> BookingLifecycle:
    return BookingLifecycle(
        repository, events=event_bus, otp_factory=lambda: TEST_OTP
    )


@pytest.fixture
def booking_factory():
    """Build pending ``Booking`` entities with unique ids."""
    counter = itertools.count(1)

    def _make(**overrides) -> Booking:
        n = next(counter)
        fields = dict(
            id=f"bk-{n:04d}",
            customer_id=CUSTOMER.id,
            customer_name=CUSTOMER.name,
            customer_phone=CUSTOMER.phone,
            pickup=POINT_A,
            delivery=POINT_B,
            vehicle_type="auto",
            distance=12.0,
            base_price=50,
            distance_charge=120,
            total_price=170,
            otp=TEST_OTP,
        )
        fields.update(overrides)
        return Booking(**fields)

    return _make
