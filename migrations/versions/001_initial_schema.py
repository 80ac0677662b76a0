"""Initial schema: bookings table.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(32), unique=True, nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("customer_name", sa.String(120), nullable=False),
        sa.Column("customer_phone", sa.String(20), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column("driver_name", sa.String(120), nullable=True),
        sa.Column("driver_phone", sa.String(20), nullable=True),
        sa.Column("driver_vehicle_number", sa.String(20), nullable=True),
        sa.Column("pickup", sa.JSON, nullable=False),
        sa.Column("delivery", sa.JSON, nullable=False),
        sa.Column("vehicle_type", sa.String(20), nullable=False),
        sa.Column("distance", sa.Float, nullable=False),
        sa.Column("base_price", sa.Integer, nullable=False),
        sa.Column("distance_charge", sa.Integer, nullable=False),
        sa.Column("total_price", sa.Integer, nullable=False),
        sa.Column("otp", sa.String(4), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index(
        "idx_bookings_vehicle_status", "bookings", ["vehicle_type", "status"]
    )
    op.create_index("idx_bookings_idempotency", "bookings", ["idempotency_key"])
    op.create_index(
        "uq_bookings_customer_open",
        "bookings",
        ["customer_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted', 'in_progress')"),
    )


def downgrade() -> None:
    op.drop_table("bookings")
