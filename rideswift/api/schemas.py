"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from rideswift.domain.entities import FareEstimate, Location
from rideswift.domain.enums import (
    CancelledBy,
    DiscountType,
    DriverStatus,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    RideTier,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = Field("", max_length=255)

    def to_location(self) -> Location:
        return Location(self.lat, self.lng, self.address)


class FareEstimateRequest(BaseModel):
    pickup: LocationIn
    dropoff: LocationIn
    tier: Optional[RideTier] = Field(
        None, description="Quote a single tier; omit to quote every tier."
    )


class RideCreateRequest(BaseModel):
    rider_id: int
    pickup: LocationIn
    dropoff: LocationIn
    stops: list[LocationIn] = Field(default_factory=list, max_length=5)
    ride_type: RideTier = RideTier.ECONOMY
    payment_method: PaymentMethod = PaymentMethod.CASH
    promo_code: Optional[str] = Field(None, max_length=32)
    promo_required: bool = Field(
        False, description="Reject the booking instead of ignoring an invalid promo code."
    )
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class DriverActionRequest(BaseModel):
    driver_id: int


class CancelRideRequest(BaseModel):
    rider_id: int
    reason: Optional[str] = Field(None, max_length=500)


class DriverStatusRequest(BaseModel):
    status: DriverStatus


class DriverLocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PromoValidateRequest(BaseModel):
    code: str = Field(..., max_length=32)
    fare: Optional[float] = Field(None, ge=0)


# ── Responses ─────────────────────────────────────────────────────────


class FareBreakdownResponse(BaseModel):
    base_fare: float
    distance_fare: float
    time_fare: float
    surge_factor: float


class FareEstimateResponse(BaseModel):
    tier: RideTier
    estimated_fare: float
    distance_km: float
    duration_minutes: float
    breakdown: FareBreakdownResponse

    @classmethod
    def from_estimate(cls, estimate: FareEstimate) -> "FareEstimateResponse":
        b = estimate.breakdown
        return cls(
            tier=estimate.tier,
            estimated_fare=estimate.estimated_fare,
            distance_km=round(estimate.distance_km, 2),
            duration_minutes=round(estimate.duration_minutes, 1),
            breakdown=FareBreakdownResponse(
                base_fare=b.base_fare,
                distance_fare=b.distance_fare,
                time_fare=b.time_fare,
                surge_factor=b.surge_factor,
            ),
        )


class RideStopResponse(BaseModel):
    stop_order: int
    address: str
    lat: float
    lng: float

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    rider_id: int
    driver_id: Optional[int] = None
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_address: str
    dropoff_lat: float
    dropoff_lng: float
    stops: list[RideStopResponse] = []
    ride_type: RideTier
    status: RideStatus
    estimated_fare: float
    final_fare: Optional[float] = None
    promo_code: Optional[str] = None
    discount_amount: float = 0.0
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NearestDriverResponse(BaseModel):
    driver_id: int
    user_id: int
    distance_km: float


class DriverResponse(BaseModel):
    id: int
    user_id: int
    status: DriverStatus
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    vehicle_type: Optional[RideTier] = None
    total_rides: int
    total_earnings: float

    model_config = {"from_attributes": True}


class PromoValidateResponse(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: float
    min_fare: Optional[float] = None
    max_discount: Optional[float] = None
    discount: Optional[float] = Field(
        None, description="Discount on the supplied fare, when one was given."
    )


class SimulationResponse(BaseModel):
    ride_id: str
    scheduled: bool


class PoolResponse(BaseModel):
    drivers: dict[DriverStatus, int]
    live_rides: int


class HealthResponse(BaseModel):
    status: str = "ok"
