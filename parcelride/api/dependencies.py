"""FastAPI dependency injection helpers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from parcelride.config import settings
from parcelride.domain.pricing import PricingEngine
from parcelride.infrastructure.database import async_session_factory
from parcelride.infrastructure.events import EventBus, InMemoryEventBus, RedisEventBus
from parcelride.infrastructure.redis_client import get_redis
from parcelride.infrastructure.repositories import (
    BookingRepository,
    KeyValueBookingRepository,
    SqlBookingRepository,
)
from parcelride.infrastructure.storage import InMemoryKeyValueStore, RedisKeyValueStore
from parcelride.services.lifecycle import BookingLifecycle

_event_bus: Optional[EventBus] = None
_kv_repository: Optional[KeyValueBookingRepository] = None


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        if settings.event_backend == "redis":
            _event_bus = RedisEventBus(get_redis())
        else:
            _event_bus = InMemoryEventBus()
    return _event_bus


def get_kv_repository() -> KeyValueBookingRepository:
    global _kv_repository
    if _kv_repository is None:
        if settings.storage_backend == "redis":
            store = RedisKeyValueStore(
                get_redis(),
                lock_ttl_seconds=settings.lock_ttl_seconds,
                lock_wait_seconds=settings.lock_wait_seconds,
            )
        else:
            store = InMemoryKeyValueStore()
        _kv_repository = KeyValueBookingRepository(store)
    return _kv_repository


def reset_singletons() -> None:
    """Drop the cached bus / key-value repository (used on shutdown and in tests)."""
    global _event_bus, _kv_repository
    _event_bus = None
    _kv_repository = None


def build_lifecycle(
    repository: BookingRepository, events: EventBus
) -> BookingLifecycle:
    return BookingLifecycle(
        repository,
        pricing=PricingEngine(minimum_distance_km=settings.minimum_distance_km),
        events=events,
    )


async def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    events: EventBus = Depends(get_event_bus),
) -> BookingLifecycle:
    if settings.storage_backend == "sql":
        repository: BookingRepository = SqlBookingRepository(db)
    else:
        repository = get_kv_repository()
    return build_lifecycle(repository, events)


@asynccontextmanager
async def lifecycle_scope() -> AsyncIterator[BookingLifecycle]:
    """Lifecycle engine outside a request (websockets, scripts)."""
    if settings.storage_backend != "sql":
        yield build_lifecycle(get_kv_repository(), get_event_bus())
        return
    async with async_session_factory() as session:
        try:
            yield build_lifecycle(SqlBookingRepository(session), get_event_bus())
            await session.commit()
        except Exception:
            await session.rollback()
            raise
