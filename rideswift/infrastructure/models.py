"""
SQLAlchemy ORM models.

Tables
------
* ``users``          -- riders (and the user account behind each driver)
* ``drivers``        -- status, last known location and running totals
* ``rides``          -- the ride lifecycle record
* ``ride_stops``     -- ordered intermediate stops of a ride
* ``promo_codes``    -- redeemable discounts with usage counters
* ``payments``       -- settlement rows written when a ride completes
* ``notifications``  -- persisted copy of every pushed notification

Indexes
-------
* **B-Tree** on ``drivers(status, h3_cell)`` for the nearest-driver
  pre-filter, on ``rides.status`` / ``rides.driver_id`` for lifecycle
  look-ups and on ``idempotency_key`` for booking retries.
* **Partial unique** on ``rides(rider_id) WHERE status IN (live)``:
  one live ride per rider, enforced by the database.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base
from rideswift.domain.enums import (
    LIVE_STATUSES,
    CancelledBy,
    DiscountType,
    DriverStatus,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    RideTier,
    enum_values,
)

_LIVE_RIDE_PREDICATE = text(
    "status IN ({})".format(
        ", ".join(f"'{s.value}'" for s in sorted(LIVE_STATUSES, key=lambda s: s.value))
    )
)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=enum_values)


# shared by drivers.vehicle_type and rides.ride_type
_TIER = _enum(RideTier, "ride_tier")


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    status = Column(
        _enum(DriverStatus, "driver_status"),
        default=DriverStatus.OFFLINE,
        nullable=False,
    )
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    # NULL means the driver takes any tier
    vehicle_type = Column(_TIER, nullable=True)
    total_rides = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    rating = Column(Float, default=5.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_status_cell", "status", "h3_cell"),
    )


class RideStopModel(Base):
    __tablename__ = "ride_stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(String(36), ForeignKey("rides.id"), nullable=False)
    stop_order = Column(Integer, nullable=False)
    address = Column(String(255), nullable=False, default="")
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)

    __table_args__ = (Index("idx_ride_stops_ride", "ride_id", "stop_order"),)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_address = Column(String(255), nullable=False, default="")
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=False, default="")
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    ride_type = Column(_TIER, nullable=False)

    estimated_fare = Column(Float, nullable=False)
    final_fare = Column(Float, nullable=True)
    promo_code = Column(String(32), nullable=True)
    discount_amount = Column(Float, default=0.0, nullable=False)
    payment_method = Column(_enum(PaymentMethod, "payment_method"), nullable=False)
    payment_status = Column(
        _enum(PaymentStatus, "payment_status"),
        default=PaymentStatus.UNPAID,
        nullable=False,
    )
    distance_km = Column(Float, nullable=True)
    duration_minutes = Column(Float, nullable=True)

    status = Column(_enum(RideStatus, "ride_status"), nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(_enum(CancelledBy, "cancelled_by"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    stops = relationship(
        RideStopModel, order_by=RideStopModel.stop_order, lazy="selectin"
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_idempotency", "idempotency_key"),
        Index(
            "uq_rides_rider_live",
            "rider_id",
            unique=True,
            postgresql_where=_LIVE_RIDE_PREDICATE,
            sqlite_where=_LIVE_RIDE_PREDICATE,
        ),
    )


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, nullable=False)  # stored upper-case
    discount_type = Column(_enum(DiscountType, "discount_type"), nullable=False)
    discount_value = Column(Float, nullable=False)
    min_fare = Column(Float, nullable=True)
    max_discount = Column(Float, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    usage_limit = Column(Integer, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(String(36), ForeignKey("rides.id"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Float, nullable=False)
    driver_amount = Column(Float, nullable=False)
    status = Column(String(20), default="succeeded", nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    type = Column(String(40), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_user", "user_id"),)
