"""
Post-completion hooks: receipt delivery and carbon bookkeeping.

Both are best-effort and run on the side-effect dispatcher after the
completion transaction has committed.  Email templating and the carbon
arithmetic live outside this service; ``CompletionSink`` is the seam.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from rideswift.domain.entities import Receipt
from rideswift.domain.enums import RideTier
from rideswift.domain.pricing import fare_components
from rideswift.infrastructure.models import RideModel, UserModel

logger = logging.getLogger(__name__)


class CompletionSink(ABC):
    @abstractmethod
    async def send_receipt(self, rider_email: str, receipt: Receipt) -> None: ...

    @abstractmethod
    async def record_carbon_footprint(
        self, rider_id: int, ride_id: str, tier: RideTier, distance_km: float
    ) -> None: ...


class LoggingCompletionSink(CompletionSink):
    """Default sink: records what would be sent."""

    async def send_receipt(self, rider_email: str, receipt: Receipt) -> None:
        logger.info(
            "Receipt for ride %s -> %s: %.2f (%s)",
            receipt.ride_id, rider_email, receipt.final_fare, receipt.payment_method,
        )

    async def record_carbon_footprint(
        self, rider_id: int, ride_id: str, tier: RideTier, distance_km: float
    ) -> None:
        logger.info(
            "Carbon footprint queued for ride %s (%s, %.1f km)",
            ride_id, tier.value, distance_km,
        )


def build_receipt(
    ride: RideModel, rider: UserModel, driver_user: UserModel | None
) -> Receipt:
    tier = RideTier(ride.ride_type)
    distance_km = ride.distance_km or 0.0
    duration_minutes = ride.duration_minutes or 0.0
    base, distance_fare, time_fare = fare_components(tier, distance_km, duration_minutes)
    driver_name = driver_user.name if driver_user is not None else "Your Driver"
    return Receipt(
        ride_id=ride.id,
        rider_name=rider.name,
        driver_name=driver_name,
        pickup_address=ride.pickup_address,
        dropoff_address=ride.dropoff_address,
        tier=tier,
        distance_km=distance_km,
        duration_minutes=duration_minutes,
        base_fare=base,
        distance_fare=distance_fare,
        time_fare=time_fare,
        final_fare=ride.final_fare,
        payment_method=ride.payment_method.value,
        discount_amount=ride.discount_amount or 0.0,
        promo_code=ride.promo_code,
        completed_at=ride.completed_at,
        stops=[stop.address for stop in ride.stops],
    )
