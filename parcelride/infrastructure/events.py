"""
Booking change notifications.

The lifecycle engine publishes a ``BookingEvent`` after every persisted
transition.  Subscribers receive events for a single booking id; the
watcher in ``parcelride.workers.watcher`` falls back to polling the
repository when no event arrives in time, so a lost message only delays
an update by one poll interval.

Channels
--------
* ``bookings:{booking_id}`` -- one Redis pub/sub channel per booking.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from parcelride.domain.entities import Booking, utcnow
from parcelride.domain.enums import BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingEvent:
    booking_id: str
    status: BookingStatus
    version: int
    occurred_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingEvent":
        return cls(booking.id, booking.status, booking.version, utcnow())

    def to_json(self) -> str:
        return json.dumps(
            {
                "booking_id": self.booking_id,
                "status": self.status.value,
                "version": self.version,
                "occurred_at": self.occurred_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "BookingEvent":
        data = json.loads(raw)
        return cls(
            booking_id=data["booking_id"],
            status=BookingStatus(data["status"]),
            version=data["version"],
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
        )


def channel_for(booking_id: str) -> str:
    return f"bookings:{booking_id}"


class Subscription(ABC):
    @abstractmethod
    async def get(self, timeout: float) -> Optional[BookingEvent]:
        """Next event, or None when *timeout* seconds pass without one."""

    @abstractmethod
    async def close(self) -> None: ...


class EventBus(ABC):
    @abstractmethod
    async def publish(self, event: BookingEvent) -> None: ...

    @abstractmethod
    async def subscribe(self, booking_id: str) -> Subscription: ...


class NullEventBus(EventBus):
    """Publishes nowhere; subscribers rely entirely on polling."""

    async def publish(self, event: BookingEvent) -> None:
        return None

    async def subscribe(self, booking_id: str) -> Subscription:
        return _NullSubscription()


class _NullSubscription(Subscription):
    async def get(self, timeout: float) -> Optional[BookingEvent]:
        await asyncio.sleep(timeout)
        return None

    async def close(self) -> None:
        return None


# ── In-process ────────────────────────────────────────────────────────


class _QueueSubscription(Subscription):
    def __init__(self, bus: "InMemoryEventBus", booking_id: str):
        self.bus = bus
        self.booking_id = booking_id
        self.queue: asyncio.Queue[BookingEvent] = asyncio.Queue()

    async def get(self, timeout: float) -> Optional[BookingEvent]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        self.bus._subscribers[self.booking_id].discard(self)


class InMemoryEventBus(EventBus):
    def __init__(self):
        self._subscribers: defaultdict[str, set[_QueueSubscription]] = defaultdict(set)

    async def publish(self, event: BookingEvent) -> None:
        for sub in list(self._subscribers.get(event.booking_id, ())):
            sub.queue.put_nowait(event)

    async def subscribe(self, booking_id: str) -> Subscription:
        sub = _QueueSubscription(self, booking_id)
        self._subscribers[booking_id].add(sub)
        return sub


# ── Redis pub/sub ─────────────────────────────────────────────────────


class _RedisSubscription(Subscription):
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def get(self, timeout: float) -> Optional[BookingEvent]:
        message = await self.pubsub.get_message(
            ignore_subscribe_messages=True, timeout=timeout
        )
        if message is None or message.get("type") != "message":
            return None
        return BookingEvent.from_json(message["data"])

    async def close(self) -> None:
        await self.pubsub.unsubscribe()
        await self.pubsub.aclose()


class RedisEventBus(EventBus):
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, event: BookingEvent) -> None:
        try:
            await self.redis.publish(channel_for(event.booking_id), event.to_json())
        except RedisError:
            # The transition is already persisted; pollers will pick it up
            logger.warning(
                "Failed to publish event for booking %s", event.booking_id,
                exc_info=True,
            )

    async def subscribe(self, booking_id: str) -> Subscription:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_for(booking_id))
        return _RedisSubscription(pubsub)
