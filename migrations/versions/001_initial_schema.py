"""Initial schema: users, drivers, rides, stops, promo codes, payments, notifications.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

LIVE_RIDE = "status IN ('accepted', 'driver_arriving', 'in_progress', 'pending', 'searching')"


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name)


# used by two tables, so created once up front
RIDE_TIER = postgresql.ENUM(
    "economy", "premium", "suv", "auto", name="ride_tier", create_type=False
)


def upgrade() -> None:
    RIDE_TIER.create(op.get_bind(), checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("driver_status", "offline", "online", "busy"),
            nullable=False,
            server_default="offline",
        ),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("vehicle_type", RIDE_TIER, nullable=True),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Float, nullable=False, server_default="0"),
        sa.Column("rating", sa.Float, server_default="5.0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_status_cell", "drivers", ["status", "h3_cell"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("pickup_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("ride_type", RIDE_TIER, nullable=False),
        sa.Column("estimated_fare", sa.Float, nullable=False),
        sa.Column("final_fare", sa.Float, nullable=True),
        sa.Column("promo_code", sa.String(32), nullable=True),
        sa.Column("discount_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "payment_method",
            _enum("payment_method", "cash", "card", "wallet"),
            nullable=False,
        ),
        sa.Column(
            "payment_status",
            _enum("payment_status", "unpaid", "paid"),
            nullable=False,
            server_default="unpaid",
        ),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("duration_minutes", sa.Float, nullable=True),
        sa.Column(
            "status",
            _enum(
                "ride_status",
                "pending",
                "searching",
                "accepted",
                "driver_arriving",
                "in_progress",
                "completed",
                "cancelled",
            ),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column(
            "cancelled_by", _enum("cancelled_by", "rider", "driver"), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_idempotency", "rides", ["idempotency_key"])
    op.create_index(
        "uq_rides_rider_live",
        "rides",
        ["rider_id"],
        unique=True,
        postgresql_where=sa.text(LIVE_RIDE),
    )

    # ── ride_stops ────────────────────────────────────────────────────
    op.create_table(
        "ride_stops",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.String(36), sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("stop_order", sa.Integer, nullable=False),
        sa.Column("address", sa.String(255), nullable=False, server_default=""),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
    )
    op.create_index("idx_ride_stops_ride", "ride_stops", ["ride_id", "stop_order"])

    # ── promo_codes ───────────────────────────────────────────────────
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), unique=True, nullable=False),
        sa.Column(
            "discount_type",
            _enum("discount_type", "percentage", "fixed"),
            nullable=False,
        ),
        sa.Column("discount_value", sa.Float, nullable=False),
        sa.Column("min_fare", sa.Float, nullable=True),
        sa.Column("max_discount", sa.Float, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usage_limit", sa.Integer, nullable=False),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ride_id",
            sa.String(36),
            sa.ForeignKey("rides.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("driver_amount", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="succeeded"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("payments")
    op.drop_table("promo_codes")
    op.drop_table("ride_stops")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("users")
    for enum_name in (
        "cancelled_by",
        "ride_status",
        "payment_status",
        "payment_method",
        "discount_type",
        "driver_status",
        "ride_tier",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
