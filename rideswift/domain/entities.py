"""
Domain value objects.

Rides, drivers and promo codes live in the database (see
``infrastructure.models``); the types here are the transient shapes the
services pass around.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import DiscountType, RideTier
from .errors import ValidationError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str = ""

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValidationError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class TravelEstimate:
    distance_meters: float
    duration_seconds: float
    source: str = "provider"  # "provider" | "haversine"


@dataclass(frozen=True)
class FareBreakdown:
    base_fare: float
    distance_fare: float
    time_fare: float
    surge_factor: float


@dataclass(frozen=True)
class FareEstimate:
    tier: RideTier
    estimated_fare: float
    distance_meters: float
    duration_seconds: float
    breakdown: FareBreakdown

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60


@dataclass(frozen=True)
class PromoTerms:
    code: str
    discount_type: DiscountType
    discount_value: float
    min_fare: Optional[float] = None
    max_discount: Optional[float] = None


@dataclass(frozen=True)
class DriverCandidate:
    driver_id: int
    user_id: int
    distance_km: float


@dataclass
class Receipt:
    ride_id: str
    rider_name: str
    driver_name: str
    pickup_address: str
    dropoff_address: str
    tier: RideTier
    distance_km: float
    duration_minutes: float
    base_fare: float
    distance_fare: float
    time_fare: float
    final_fare: float
    payment_method: str
    discount_amount: float = 0.0
    promo_code: Optional[str] = None
    completed_at: Optional[datetime] = None
    stops: list[str] = field(default_factory=list)
