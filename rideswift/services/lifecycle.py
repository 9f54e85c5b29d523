"""
Ride State Machine
==================

Drives an existing ride through ``accept / arrive / start / complete /
cancel`` and performs the rider, driver and payment bookkeeping that goes
with each step.

Concurrency
-----------
Each transition is one conditional UPDATE built from
``domain.state_machine.TRANSITION_TABLE``.  When two callers race on the
same ride (two drivers accepting, a rider cancelling against an accept),
whichever UPDATE commits first wins; the other matches zero rows and gets
a typed error:

* accept   -> ``ConflictError`` ("Ride is no longer available", or the driver
             is not online any more)
* cancel   -> ``ConflictError`` when the ride moved on under us
* others   -> ``InvalidStateTransition``

Side effects
------------
Notifications, the receipt and the carbon hook are queued on the
side-effect dispatcher *after* commit.  Their failure is logged there and
never turns a committed transition into an error.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.config import settings
from rideswift.domain.distance import route_km
from rideswift.domain.enums import (
    CancelledBy,
    PaymentStatus,
    RideStatus,
    RideTier,
)
from rideswift.domain.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
)
from rideswift.domain.pricing import driver_payout
from rideswift.domain.state_machine import RideAction, resolve_transition, rule_for
from rideswift.infrastructure.models import DriverModel, RideModel
from rideswift.infrastructure.repositories import (
    DriverRepository,
    PaymentRepository,
    RideRepository,
    UserRepository,
)
from rideswift.services.completion import CompletionSink, build_receipt
from rideswift.services.driver_pool import DriverPool
from rideswift.services.notifications import Notifier
from rideswift.workers.dispatcher import SideEffectDispatcher

logger = logging.getLogger(__name__)


class RideStateMachine:
    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        completion_sink: CompletionSink,
        dispatcher: SideEffectDispatcher,
        pool: Optional[DriverPool] = None,
        driver_share: float = settings.driver_share,
        currency: str = settings.currency,
        minutes_per_km: float = settings.fallback_minutes_per_km,
    ):
        self.session = session
        self.rides = RideRepository(session)
        self.drivers = DriverRepository(session)
        self.users = UserRepository(session)
        self.payments = PaymentRepository(session)
        self.pool = pool or DriverPool(session)
        self.notifier = notifier
        self.completion_sink = completion_sink
        self.dispatcher = dispatcher
        self.driver_share = driver_share
        self.currency = currency
        self.minutes_per_km = minutes_per_km

    # ── Driver actions ────────────────────────────────────────────────

    async def accept(self, ride_id: str, driver_id: int) -> RideModel:
        await self._require_driver(driver_id)
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise NotFoundError("Ride not found")

        if await self.rides.get_live_for_driver(driver_id) is not None:
            raise ConflictError("Driver already has an active ride")

        # Driver and ride are both claimed by conditional UPDATE in one
        # transaction; losing either race undoes the other.
        try:
            await self.pool.mark_busy(driver_id)
        except ConflictError:
            await self.session.rollback()
            raise
        won = await self.rides.transition(
            ride_id,
            rule_for(RideAction.ACCEPT),
            driver_id=driver_id,
            accepted_at=func.now(),
        )
        if not won:
            await self.session.rollback()
            raise ConflictError("Ride is no longer available")

        ride = await self._commit(ride_id)
        logger.info("Ride %s accepted by driver %d", ride_id, driver_id)

        self.notifier.ride_accepted(ride.rider_id, ride.id)
        return ride

    async def decline(self, ride_id: str, driver_id: int) -> None:
        # The ride stays exactly as it is for the next driver.
        logger.info("Driver %d declined ride %s", driver_id, ride_id)

    async def arrive(self, ride_id: str, driver_id: int) -> RideModel:
        await self._guarded(RideAction.ARRIVE, ride_id, driver_id)
        ride = await self._commit(ride_id)
        self.notifier.driver_arriving(ride.rider_id, ride.id)
        return ride

    async def start(self, ride_id: str, driver_id: int) -> RideModel:
        await self._guarded(RideAction.START, ride_id, driver_id, started_at=func.now())
        ride = await self._commit(ride_id)
        logger.info("Ride %s started", ride_id)
        self.notifier.ride_started(ride.rider_id, ride.id)
        return ride

    async def complete(self, ride_id: str, driver_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None or ride.driver_id != driver_id:
            raise InvalidStateTransition()

        fare = ride.estimated_fare
        distance_km = ride.distance_km
        duration_minutes = ride.duration_minutes
        if distance_km is None:
            distance_km = round(self._route_km(ride), 2)
        if duration_minutes is None:
            duration_minutes = round(distance_km * self.minutes_per_km, 1)

        await self._guarded(
            RideAction.COMPLETE,
            ride_id,
            driver_id,
            completed_at=func.now(),
            final_fare=RideModel.estimated_fare,  # no re-metering
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            payment_status=PaymentStatus.PAID,
        )
        await self.pool.record_completion(driver_id, fare)
        await self.users.increment_total_rides(ride.rider_id)
        await self.payments.record_settlement(
            ride_id=ride_id,
            user_id=ride.rider_id,
            amount=fare,
            driver_amount=driver_payout(fare, self.driver_share),
            currency=self.currency,
        )
        ride = await self._commit(ride_id)
        logger.info("Ride %s completed, fare %.2f", ride_id, ride.final_fare)

        self.notifier.ride_completed(ride.rider_id, ride.id, ride.final_fare)
        await self._queue_completion_hooks(ride, driver_id)
        return ride

    # ── Rider actions ─────────────────────────────────────────────────

    async def cancel(
        self, ride_id: str, rider_id: int, reason: Optional[str] = None
    ) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None or ride.rider_id != rider_id:
            raise NotFoundError("Ride not found")
        status = RideStatus(ride.status)
        if status is RideStatus.COMPLETED:
            raise InvalidStateTransition("Cannot cancel a completed ride")
        resolve_transition(RideAction.CANCEL, status)

        won = await self.rides.transition(
            ride_id,
            rule_for(RideAction.CANCEL),
            requested_by=rider_id,
            cancelled_at=func.now(),
            cancellation_reason=reason,
            cancelled_by=CancelledBy.RIDER,
        )
        if not won:
            await self.session.rollback()
            raise ConflictError("Ride changed state before it could be cancelled")

        # Re-read: an accept may have committed between our read and the UPDATE.
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        driver: Optional[DriverModel] = None
        if ride.driver_id is not None:
            driver = await self.drivers.get_by_id(ride.driver_id)
            await self.pool.release(ride.driver_id)

        ride = await self._commit(ride_id)
        logger.info("Ride %s cancelled by rider %d", ride_id, rider_id)
        if driver is not None:
            self.notifier.ride_cancelled(driver.user_id, ride.id, reason)
        return ride

    # ── Internals ─────────────────────────────────────────────────────

    async def _require_driver(self, driver_id: int) -> DriverModel:
        driver = await self.drivers.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError("Driver record not found")
        return driver

    async def _guarded(
        self, action: RideAction, ride_id: str, driver_id: int, **values
    ) -> None:
        """Driver-side transition that must be performed by the assigned driver."""
        won = await self.rides.transition(
            ride_id, rule_for(action), assigned_to=driver_id, **values
        )
        if not won:
            await self.session.rollback()
            raise InvalidStateTransition()

    async def _commit(self, ride_id: str) -> RideModel:
        await self.session.commit()
        return await self.rides.get_by_id(ride_id, fresh=True)

    def _route_km(self, ride: RideModel) -> float:
        points = [(ride.pickup_lat, ride.pickup_lng)]
        points += [(stop.lat, stop.lng) for stop in ride.stops]
        points.append((ride.dropoff_lat, ride.dropoff_lng))
        return route_km(points)

    async def _queue_completion_hooks(self, ride: RideModel, driver_id: int) -> None:
        try:
            rider = await self.users.get_by_id(ride.rider_id)
            driver = await self.drivers.get_by_id(driver_id)
            driver_user = await self.users.get_by_id(driver.user_id) if driver else None
        except SQLAlchemyError:
            logger.exception("Could not prepare receipt for ride %s", ride.id)
            return
        if rider is None:
            return
        receipt = build_receipt(ride, rider, driver_user)
        sink = self.completion_sink
        tier = RideTier(ride.ride_type)

        async def send_receipt() -> None:
            await sink.send_receipt(rider.email, receipt)

        async def record_carbon() -> None:
            await sink.record_carbon_footprint(
                ride.rider_id, ride.id, tier, ride.distance_km or 0.0
            )

        self.dispatcher.submit(f"receipt {ride.id}", send_receipt)
        self.dispatcher.submit(f"carbon {ride.id}", record_carbon)
