"""
Fare Pricing  (Strategy Pattern)
================================

Formula
-------
Fare = max((Base + Distance_km x Per_Km + Duration_min x Per_Min) x Surge, Base)

* **Surge** is a pluggable ``SurgePolicy``.  The default is
  ``TimeOfDaySurge``: a fixed multiplier inside two daily peak windows,
  1.0 otherwise.  It is *not* demand-responsive.
* Intermediate values keep full precision; only the final fare and the
  display breakdown are rounded to currency precision.

Promo discounts
---------------
* percentage -> ``fare x value / 100``, capped at ``max_discount`` if set
* fixed      -> ``value`` flat, never capped (may exceed the fare; the
  caller floors the discounted fare at 0)

Complexity: O(1) per calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from .entities import FareBreakdown, FareEstimate, PromoTerms, TravelEstimate
from .enums import DiscountType, RideTier


@dataclass(frozen=True)
class TierRates:
    base: float
    per_km: float
    per_min: float


RATE_CARD: dict[RideTier, TierRates] = {
    RideTier.ECONOMY: TierRates(base=2.5, per_km=0.9, per_min=0.12),
    RideTier.PREMIUM: TierRates(base=5.0, per_km=1.8, per_min=0.25),
    RideTier.SUV: TierRates(base=6.0, per_km=2.2, per_min=0.30),
    RideTier.AUTO: TierRates(base=1.5, per_km=0.6, per_min=0.08),
}


# ── Surge strategies ──────────────────────────────────────────────────


class SurgePolicy(ABC):
    @abstractmethod
    def multiplier(self, at: datetime) -> float: ...


class FlatSurge(SurgePolicy):
    def __init__(self, value: float = 1.0):
        self.value = value

    def multiplier(self, at: datetime) -> float:
        return self.value


class TimeOfDaySurge(SurgePolicy):
    """Multiplier applied during fixed daily windows (inclusive hours)."""

    DEFAULT_WINDOWS: tuple[tuple[int, int], ...] = ((7, 9), (17, 20))

    def __init__(
        self,
        surge: float = 1.3,
        windows: tuple[tuple[int, int], ...] = DEFAULT_WINDOWS,
    ):
        self.surge = surge
        self.windows = windows

    def multiplier(self, at: datetime) -> float:
        hour = at.hour
        if any(start <= hour <= end for start, end in self.windows):
            return self.surge
        return 1.0


# ── Calculations ──────────────────────────────────────────────────────


def price_fare(
    tier: RideTier, travel: TravelEstimate, surge_factor: float = 1.0
) -> FareEstimate:
    rates = RATE_CARD[tier]
    km = max(travel.distance_meters, 0.0) / 1000
    minutes = max(travel.duration_seconds, 0.0) / 60

    distance_fare = km * rates.per_km
    time_fare = minutes * rates.per_min
    fare = max((rates.base + distance_fare + time_fare) * surge_factor, rates.base)

    return FareEstimate(
        tier=tier,
        estimated_fare=round(fare, 2),
        distance_meters=travel.distance_meters,
        duration_seconds=travel.duration_seconds,
        breakdown=FareBreakdown(
            base_fare=rates.base,
            distance_fare=round(distance_fare, 2),
            time_fare=round(time_fare, 2),
            surge_factor=surge_factor,
        ),
    )


def compute_discount(terms: PromoTerms, fare: float) -> float:
    if terms.discount_type is DiscountType.PERCENTAGE:
        discount = fare * terms.discount_value / 100
        if terms.max_discount is not None:
            discount = min(discount, terms.max_discount)
    else:
        discount = terms.discount_value
    return round(discount, 2)


def apply_discount(fare: float, discount: float) -> float:
    return round(max(fare - discount, 0.0), 2)


def fare_components(
    tier: RideTier, distance_km: float, duration_minutes: float
) -> tuple[float, float, float]:
    """(base, distance, time) components for a receipt, un-surged."""
    rates = RATE_CARD[tier]
    return (
        rates.base,
        round(distance_km * rates.per_km, 2),
        round(duration_minutes * rates.per_min, 2),
    )


def driver_payout(fare: float, share: float) -> float:
    return round(fare * share, 2)
