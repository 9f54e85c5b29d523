"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Every status mutation here is a single-row conditional UPDATE whose
``WHERE`` clause carries the precondition.  The caller learns whether it
won from the affected row count; there is no read-modify-write on a
status column anywhere in the code base.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    NotificationModel,
    PaymentModel,
    PromoCodeModel,
    RideModel,
    RideStopModel,
    UserModel,
)
from rideswift.domain.entities import Location
from rideswift.domain.enums import LIVE_STATUSES, DriverStatus, RideStatus, RideTier
from rideswift.domain.matching import PositionedDriver
from rideswift.domain.state_machine import TransitionRule


def _ordered(statuses: Iterable[RideStatus]) -> list[RideStatus]:
    return sorted(statuses, key=lambda s: s.value)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(
        self,
        *,
        stops: Iterable[Location] = (),
        **fields: Any,
    ) -> RideModel:
        ride = RideModel(**fields)
        ride.stops = [
            RideStopModel(
                stop_order=order,
                address=stop.address,
                lat=stop.latitude,
                lng=stop.longitude,
            )
            for order, stop in enumerate(stops, start=1)
        ]
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_by_id(
        self, ride_id: str, *, fresh: bool = False
    ) -> Optional[RideModel]:
        """``fresh`` re-reads the row even if the session already holds it."""
        return await self.session.get(RideModel, ride_id, populate_existing=fresh)

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_live_for_rider(self, rider_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.rider_id == rider_id,
                RideModel.status.in_(_ordered(LIVE_STATUSES)),
            )
            .order_by(RideModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_live_for_driver(self, driver_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(_ordered(LIVE_STATUSES)),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_available(self, limit: int = 20) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status.in_([RideStatus.PENDING, RideStatus.SEARCHING]))
            .order_by(RideModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_live(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.status.in_(_ordered(LIVE_STATUSES)))
        )
        return result.scalar() or 0

    async def transition(
        self,
        ride_id: str,
        rule: TransitionRule,
        *,
        assigned_to: Optional[int] = None,
        requested_by: Optional[int] = None,
        **values: Any,
    ) -> bool:
        """
        Atomically move a ride along *rule*.

        The UPDATE only matches while the ride is still in one of
        ``rule.sources`` (and, when given, still belongs to driver
        ``assigned_to`` or rider ``requested_by``), so of two racing
        transitions exactly one sees a row.
        """
        stmt = update(RideModel).where(
            RideModel.id == ride_id,
            RideModel.status.in_(_ordered(rule.sources)),
        )
        if assigned_to is not None:
            stmt = stmt.where(RideModel.driver_id == assigned_to)
        if requested_by is not None:
            stmt = stmt.where(RideModel.rider_id == requested_by)
        stmt = stmt.values(status=rule.target, **values).execution_options(
            synchronize_session=False
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, driver_id: int, *, fresh: bool = False
    ) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id, populate_existing=fresh)

    async def online_candidates(
        self,
        tier: Optional[RideTier],
        cells: Optional[set[str]] = None,
        exclude: Iterable[int] = (),
        limit: Optional[int] = None,
    ) -> list[PositionedDriver]:
        """Online, located drivers serving *tier* (or any tier)."""
        query = select(
            DriverModel.id,
            DriverModel.user_id,
            DriverModel.current_lat,
            DriverModel.current_lng,
        ).where(
            DriverModel.status == DriverStatus.ONLINE,
            DriverModel.current_lat.is_not(None),
            DriverModel.current_lng.is_not(None),
        )
        if tier is not None:
            query = query.where(
                (DriverModel.vehicle_type == tier) | DriverModel.vehicle_type.is_(None)
            )
        if cells is not None:
            query = query.where(DriverModel.h3_cell.in_(sorted(cells)))
        excluded = list(exclude)
        if excluded:
            query = query.where(DriverModel.id.not_in(excluded))
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [
            PositionedDriver(
                driver_id=row.id,
                user_id=row.user_id,
                lat=row.current_lat,
                lng=row.current_lng,
            )
            for row in result.all()
        ]

    async def compare_and_set_status(
        self,
        driver_id: int,
        expected: Iterable[DriverStatus],
        new: DriverStatus,
    ) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == driver_id,
                DriverModel.status.in_(list(expected)),
            )
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_location(
        self, driver_id: int, lat: float, lng: float, h3_cell: str
    ) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(current_lat=lat, current_lng=lng, h3_cell=h3_cell)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_completed_ride(self, driver_id: int, fare: float) -> bool:
        """Back online with updated totals, in one statement."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                status=DriverStatus.ONLINE,
                total_rides=DriverModel.total_rides + 1,
                total_earnings=DriverModel.total_earnings + fare,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def count_by_status(self) -> dict[DriverStatus, int]:
        result = await self.session.execute(
            select(DriverModel.status, func.count()).group_by(DriverModel.status)
        )
        counts = {status: 0 for status in DriverStatus}
        for status, count in result.all():
            counts[DriverStatus(status)] = count
        return counts


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def increment_total_rides(self, user_id: int) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(total_rides=UserModel.total_rides + 1)
            .execution_options(synchronize_session=False)
        )


class PromoCodeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def lookup(self, code: str, now: datetime):
        """
        Return the promo row plus ``unexpired`` / ``has_uses`` flags, or None.

        Expiry and usage are evaluated by the database so stored and
        compared timestamps share one clock and one representation.
        """
        result = await self.session.execute(
            select(
                PromoCodeModel,
                (PromoCodeModel.expires_at > now).label("unexpired"),
                (PromoCodeModel.usage_count < PromoCodeModel.usage_limit).label(
                    "has_uses"
                ),
            ).where(PromoCodeModel.code == code.upper())
        )
        return result.one_or_none()

    async def redeem(self, code: str, now: datetime) -> bool:
        """Increment the usage counter only while the code is redeemable."""
        result = await self.session.execute(
            update(PromoCodeModel)
            .where(
                PromoCodeModel.code == code.upper(),
                PromoCodeModel.is_active.is_(True),
                PromoCodeModel.expires_at > now,
                PromoCodeModel.usage_count < PromoCodeModel.usage_limit,
            )
            .values(usage_count=PromoCodeModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_settlement(
        self,
        *,
        ride_id: str,
        user_id: int,
        amount: float,
        driver_amount: float,
        currency: str,
    ) -> PaymentModel:
        payment = PaymentModel(
            ride_id=ride_id,
            user_id=user_id,
            amount=amount,
            driver_amount=driver_amount,
            status="succeeded",
            currency=currency,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_for_ride(self, ride_id: str) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.ride_id == ride_id)
        )
        return result.scalar_one_or_none()


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        user_id: int,
        type: str,
        message: str,
        data: Optional[dict] = None,
    ) -> NotificationModel:
        notification = NotificationModel(
            user_id=user_id, type=type, message=message, data=data
        )
        self.session.add(notification)
        await self.session.flush()
        return notification
