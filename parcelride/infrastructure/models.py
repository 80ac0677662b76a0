"""
SQLAlchemy ORM models.

Tables
------
* ``bookings`` -- one row per booking; pickup / delivery are copied by
  value from the location catalog as JSON.

Indexes
-------
* **B-Tree** on ``customer_id``, ``driver_id``, ``status``,
  ``vehicle_type`` and ``idempotency_key`` so the customer history,
  driver request queue and active-booking look-ups avoid full scans.
* **Partial unique** on ``customer_id`` over open statuses, so two racing
  creates cannot both leave the customer with an open booking.

``seq`` is a surrogate key that preserves insertion order; ``version`` is
the optimistic-concurrency token compared on every update.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    func,
    text,
)

from .database import Base

# A customer holds at most one open booking
OPEN_STATUS_CLAUSE = "status IN ('pending', 'accepted', 'in_progress')"


class BookingModel(Base):
    __tablename__ = "bookings"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False)

    customer_id = Column(String(64), nullable=False)
    customer_name = Column(String(120), nullable=False)
    customer_phone = Column(String(20), nullable=False)

    driver_id = Column(String(64), nullable=True)
    driver_name = Column(String(120), nullable=True)
    driver_phone = Column(String(20), nullable=True)
    driver_vehicle_number = Column(String(20), nullable=True)

    pickup = Column(JSON, nullable=False)
    delivery = Column(JSON, nullable=False)

    vehicle_type = Column(String(20), nullable=False)
    distance = Column(Float, nullable=False)
    base_price = Column(Integer, nullable=False)
    distance_charge = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)

    otp = Column(String(4), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_customer", "customer_id"),
        Index("idx_bookings_driver", "driver_id"),
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_vehicle_status", "vehicle_type", "status"),
        Index("idx_bookings_idempotency", "idempotency_key"),
        Index(
            "uq_bookings_customer_open",
            "customer_id",
            unique=True,
            postgresql_where=text(OPEN_STATUS_CLAUSE),
            sqlite_where=text(OPEN_STATUS_CLAUSE),
        ),
    )
