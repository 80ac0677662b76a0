"""
Seed script -- populates the database with sample bookings for reviewers.

Run after migrations:
    python seed.py

Creates, through the lifecycle engine:
  - a completed auto trip for the demo customer, driven by the demo driver
  - a cancelled tempo booking for a second customer
  - a pending truck booking for a third customer
  - a pending auto booking that shows up in the demo driver's requests
"""

import asyncio

from sqlalchemy import func, select

from parcelride.api.dependencies import lifecycle_scope
from parcelride.domain.entities import CustomerInfo, DriverInfo
from parcelride.domain.locations import get_location
from parcelride.infrastructure.database import async_session_factory, engine
from parcelride.infrastructure.models import BookingModel

# Demo accounts of the mobile app
DEMO_CUSTOMER = CustomerInfo(id="1", name="Rahul Kumar", phone="9876543210")
DEMO_DRIVER = DriverInfo(
    id="2", name="Vijay Singh", phone="9876543211", vehicle_number="MP 09 AB 1234"
)

CUSTOMERS = [
    CustomerInfo(id="3", name="Priya Patel", phone="9876543212"),
    CustomerInfo(id="4", name="Arjun Mehta", phone="9876543213"),
    CustomerInfo(id="5", name="Sneha Gupta", phone="9876543214"),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(BookingModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    async with lifecycle_scope() as lifecycle:
        # ── Completed trip ────────────────────────────────────────────
        done = await lifecycle.create_booking(
            DEMO_CUSTOMER, get_location("1"), get_location("2"), "auto"
        )
        await lifecycle.accept_booking(done.id, DEMO_DRIVER)
        await lifecycle.start_trip(done.id, done.otp)
        await lifecycle.complete_trip(done.id)
        print(f"  Completed booking {done.id} (total {done.total_price})")

        # ── Cancelled ─────────────────────────────────────────────────
        cancelled = await lifecycle.create_booking(
            CUSTOMERS[0], get_location("4"), get_location("9"), "tempo"
        )
        await lifecycle.cancel_booking(cancelled.id)
        print(f"  Cancelled booking {cancelled.id}")

        # ── Pending ───────────────────────────────────────────────────
        for customer, pickup, delivery, tier in (
            (CUSTOMERS[1], "5", "8", "truck"),
            (CUSTOMERS[2], "6", "3", "auto"),
        ):
            booking = await lifecycle.create_booking(
                customer, get_location(pickup), get_location(delivery), tier
            )
            print(f"  Pending {tier} booking {booking.id} (OTP {booking.otp})")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
