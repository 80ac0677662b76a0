"""
Booking Watcher
===============

Streams the successive states of one booking to a client.

Freshness
---------
* **Push** -- waits on the booking's event subscription and re-reads the
  booking as soon as a newer version is announced.
* **Poll fallback** -- if no event arrives within ``interval`` seconds
  (default 3 s) the booking is re-read anyway, so dropped or undelivered
  events only cost one interval of latency.

A state is yielded only when its ``version`` differs from the last one
sent.  The stream ends after a terminal status (completed / cancelled).
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable

from parcelride.config import settings
from parcelride.domain.entities import Booking
from parcelride.infrastructure.events import EventBus

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[Booking]]


async def watch_booking(
    booking_id: str,
    fetch: Fetch,
    events: EventBus,
    interval: float | None = None,
) -> AsyncIterator[Booking]:
    """Yield the current booking, then every later version until terminal.

    *fetch* reads the latest committed booking and raises
    ``BookingNotFound`` when it does not exist.
    """
    interval = settings.poll_interval_seconds if interval is None else interval

    # Subscribe first so nothing published between the read and the
    # subscription is missed
    subscription = await events.subscribe(booking_id)
    try:
        booking = await fetch(booking_id)
        yield booking

        while not booking.is_terminal:
            event = await subscription.get(timeout=interval)
            if event is None:
                logger.debug("No event for booking %s, polling", booking_id)
            elif event.version <= booking.version:
                continue

            latest = await fetch(booking_id)
            if latest.version != booking.version:
                booking = latest
                yield booking
    finally:
        await subscription.close()
