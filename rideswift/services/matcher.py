"""
Ride Booking
============

``book_ride`` turns a rider's request into a persisted ride:

1. Idempotency guard -- a retried request with the same key gets the
   ride that was already created.
2. One live ride per rider (checked here, enforced by the
   ``uq_rides_rider_live`` partial unique index).
3. Fare quote for the requested tier, then the optional promo discount.
4. Instant assignment: the nearest online driver inside the match radius
   is claimed (``online -> busy``) in the same transaction.
5. Initial status: ``accepted`` when a driver was claimed, otherwise
   ``pending`` for pre-authorised payment methods and ``searching`` for
   cash.

Everything above commits together; the driver notification (direct
assignment or a broadcast to nearby drivers) is queued afterwards.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.config import settings
from rideswift.domain.entities import Location
from rideswift.domain.enums import PaymentMethod, RideTier
from rideswift.domain.errors import ConflictError, InvalidPromoCode, NotFoundError
from rideswift.domain.pricing import apply_discount
from rideswift.domain.state_machine import initial_status
from rideswift.infrastructure.models import RideModel
from rideswift.infrastructure.repositories import RideRepository, UserRepository
from rideswift.services.driver_pool import DriverPool
from rideswift.services.fares import FareQuoter
from rideswift.services.notifications import Notifier
from rideswift.services.promos import PromoLedger

logger = logging.getLogger(__name__)


class RideMatcher:
    def __init__(
        self,
        session: AsyncSession,
        quoter: FareQuoter,
        notifier: Notifier,
        pool: Optional[DriverPool] = None,
        promos: Optional[PromoLedger] = None,
        broadcast_limit: int = settings.broadcast_limit,
    ):
        self.session = session
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.pool = pool or DriverPool(session)
        self.promos = promos or PromoLedger(session)
        self.quoter = quoter
        self.notifier = notifier
        self.broadcast_limit = broadcast_limit

    async def book_ride(
        self,
        rider_id: int,
        pickup: Location,
        dropoff: Location,
        stops: Sequence[Location] = (),
        tier: RideTier = RideTier.ECONOMY,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        promo_code: Optional[str] = None,
        *,
        promo_required: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> RideModel:
        if idempotency_key:
            existing = await self._replay(idempotency_key, rider_id)
            if existing is not None:
                return existing

        if await self.users.get_by_id(rider_id) is None:
            raise NotFoundError("Rider not found")
        if await self.rides.get_live_for_rider(rider_id) is not None:
            raise ConflictError("Rider already has an active ride")

        estimate = await self.quoter.quote(pickup, dropoff, tier)
        fare = estimate.estimated_fare

        applied_code: Optional[str] = None
        discount = 0.0
        if promo_code:
            try:
                terms, discount = await self.promos.apply(promo_code, fare)
                applied_code = terms.code
            except InvalidPromoCode as exc:
                if promo_required:
                    raise
                logger.info("Ignoring promo for rider %d: %s", rider_id, exc.message)
        fare = apply_discount(fare, discount)

        driver = await self.pool.claim_nearest(
            pickup.latitude, pickup.longitude, tier
        )
        status = initial_status(payment_method, driver is not None)

        try:
            ride = await self.rides.create_ride(
                rider_id=rider_id,
                driver_id=driver.driver_id if driver else None,
                pickup_address=pickup.address,
                pickup_lat=pickup.latitude,
                pickup_lng=pickup.longitude,
                dropoff_address=dropoff.address,
                dropoff_lat=dropoff.latitude,
                dropoff_lng=dropoff.longitude,
                ride_type=tier,
                estimated_fare=fare,
                promo_code=applied_code,
                discount_amount=discount,
                payment_method=payment_method,
                status=status,
                idempotency_key=idempotency_key,
                accepted_at=func.now() if driver else None,
                stops=stops,
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            if idempotency_key:
                existing = await self._replay(idempotency_key, rider_id)
                if existing is not None:
                    return existing
            raise ConflictError("Rider already has an active ride")

        ride = await self.rides.get_by_id(ride.id, fresh=True)
        logger.info(
            "Ride %s booked for rider %d (%s, %.2f, %s)",
            ride.id, rider_id, tier.value, fare, status.value,
        )

        if driver is not None:
            self.notifier.ride_assigned(driver.user_id, ride)
        else:
            try:
                nearby = await self.pool.nearby_online_user_ids(
                    pickup.latitude, pickup.longitude, self.broadcast_limit
                )
            except SQLAlchemyError:
                logger.exception("Could not look up drivers to notify for %s", ride.id)
                nearby = []
            self.notifier.ride_request(nearby, ride)
        return ride

    async def _replay(self, idempotency_key: str, rider_id: int) -> Optional[RideModel]:
        """The ride an earlier request with this key created, if it was ours."""
        existing = await self.rides.get_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if existing.rider_id != rider_id:
            raise ConflictError("Idempotency key was used by another request")
        return existing
