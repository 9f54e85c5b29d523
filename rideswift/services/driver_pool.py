"""
Driver pool: the sole authority on driver occupancy and position.

Nearest-driver queries may race: two concurrent ``find_nearest`` calls
can return the same driver.  Exclusivity is established afterwards by a
compare-and-set on the driver row (``online -> busy``).  ``claim_nearest``
runs the read and the CAS in the caller's transaction and moves on to the
next candidate when it loses a race.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.config import settings
from rideswift.domain.entities import DriverCandidate, Location
from rideswift.domain.enums import DriverStatus, RideTier
from rideswift.domain.errors import ConflictError, NotFoundError, ValidationError
from rideswift.domain.matching import (
    driver_h3_cell,
    nearest_within,
    rank_by_distance,
    search_cells,
)
from rideswift.infrastructure.repositories import DriverRepository

logger = logging.getLogger(__name__)

# Statuses a driver may set for themselves; ``busy`` belongs to the ride flow.
SELF_SERVICE_STATUSES = frozenset({DriverStatus.ONLINE, DriverStatus.OFFLINE})


class DriverPool:
    def __init__(
        self,
        session: AsyncSession,
        radius_km: float = settings.match_radius_km,
        resolution: int = settings.h3_resolution,
        max_claim_attempts: int = settings.max_claim_attempts,
    ):
        self.drivers = DriverRepository(session)
        self.radius_km = radius_km
        self.resolution = resolution
        self.max_claim_attempts = max_claim_attempts

    # ── Queries ───────────────────────────────────────────────────────

    async def find_nearest(
        self,
        lat: float,
        lng: float,
        tier: Optional[RideTier],
        *,
        exclude: Iterable[int] = (),
        unbounded: bool = False,
    ) -> Optional[DriverCandidate]:
        """
        Closest online driver serving *tier* within the radius, or None.

        ``unbounded`` drops the radius and the cell pre-filter.
        """
        radius_km = None if unbounded else self.radius_km
        cells = (
            None
            if unbounded
            else search_cells(lat, lng, self.radius_km, self.resolution)
        )
        drivers = await self.drivers.online_candidates(tier, cells, exclude)
        best = nearest_within(drivers, lat, lng, radius_km)
        if best is None:
            return None
        distance, driver = best
        return DriverCandidate(
            driver_id=driver.driver_id, user_id=driver.user_id, distance_km=distance
        )

    async def nearby_online_user_ids(
        self, lat: float, lng: float, limit: int
    ) -> list[int]:
        """User ids of online drivers of any tier inside the radius, closest first."""
        cells = search_cells(lat, lng, self.radius_km, self.resolution)
        drivers = await self.drivers.online_candidates(None, cells)
        ranked = [
            (d.user_id, dist)
            for dist, d in rank_by_distance(drivers, lat, lng)
            if dist <= self.radius_km
        ]
        return [user_id for user_id, _ in ranked[:limit]]

    # ── Mutations ─────────────────────────────────────────────────────

    async def claim_nearest(
        self,
        lat: float,
        lng: float,
        tier: Optional[RideTier],
        *,
        unbounded: bool = False,
    ) -> Optional[DriverCandidate]:
        """Find the nearest driver and flip them ``online -> busy``."""
        lost: set[int] = set()
        for _ in range(self.max_claim_attempts):
            candidate = await self.find_nearest(
                lat, lng, tier, exclude=lost, unbounded=unbounded
            )
            if candidate is None:
                return None
            if await self.drivers.compare_and_set_status(
                candidate.driver_id, {DriverStatus.ONLINE}, DriverStatus.BUSY
            ):
                return candidate
            logger.info(
                "Driver %d was claimed concurrently, trying next candidate",
                candidate.driver_id,
            )
            lost.add(candidate.driver_id)
        return None

    async def mark_busy(self, driver_id: int) -> None:
        """``online -> busy`` for a driver taking a ride by hand."""
        if await self.drivers.compare_and_set_status(
            driver_id, {DriverStatus.ONLINE}, DriverStatus.BUSY
        ):
            return
        driver = await self.drivers.get_by_id(driver_id, fresh=True)
        if driver is None:
            raise NotFoundError("Driver record not found")
        if DriverStatus(driver.status) is DriverStatus.OFFLINE:
            raise ConflictError("Driver is offline")
        raise ConflictError("Driver already has an active ride")

    async def release(self, driver_id: int) -> bool:
        """``busy -> online``.  No-op if the driver went offline meanwhile."""
        return await self.drivers.compare_and_set_status(
            driver_id, {DriverStatus.BUSY}, DriverStatus.ONLINE
        )

    async def record_completion(self, driver_id: int, fare: float) -> None:
        """Back to ``online`` with ride and earnings totals bumped."""
        if not await self.drivers.record_completed_ride(driver_id, fare):
            raise NotFoundError("Driver record not found")

    async def set_status(self, driver_id: int, status: DriverStatus) -> None:
        if status not in SELF_SERVICE_STATUSES:
            raise ValidationError(f"Drivers cannot set status {status.value!r}")
        if await self.drivers.compare_and_set_status(
            driver_id, SELF_SERVICE_STATUSES, status
        ):
            return
        if await self.drivers.get_by_id(driver_id) is None:
            raise NotFoundError("Driver record not found")
        raise ConflictError("Driver is on an active ride")

    async def set_location(self, driver_id: int, lat: float, lng: float) -> None:
        location = Location(lat, lng)
        cell = driver_h3_cell(location.latitude, location.longitude, self.resolution)
        if not await self.drivers.set_location(driver_id, lat, lng, cell):
            raise NotFoundError("Driver record not found")

