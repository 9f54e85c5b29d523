"""
Driver endpoints
================

PATCH /api/v1/drivers/{driver_id}/status    -- go online / offline
PATCH /api/v1/drivers/{driver_id}/location  -- position update
GET   /api/v1/drivers/nearest               -- nearest online driver (read only)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.api.dependencies import get_db, get_runtime
from rideswift.api.middleware import limiter
from rideswift.api.schemas import (
    DriverLocationRequest,
    DriverResponse,
    DriverStatusRequest,
    NearestDriverResponse,
)
from rideswift.config import settings
from rideswift.domain.enums import RideTier
from rideswift.domain.errors import NotFoundError
from rideswift.infrastructure.repositories import DriverRepository
from rideswift.runtime import Runtime

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/nearest",
    response_model=NearestDriverResponse,
    summary="Nearest online driver within the match radius",
)
@limiter.limit(settings.rate_limit)
async def nearest_driver(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    tier: Optional[RideTier] = None,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    candidate = await runtime.driver_pool(db).find_nearest(lat, lng, tier)
    if candidate is None:
        raise NotFoundError("No driver available nearby")
    return NearestDriverResponse(
        driver_id=candidate.driver_id,
        user_id=candidate.user_id,
        distance_km=round(candidate.distance_km, 3),
    )


@router.patch(
    "/{driver_id}/status",
    response_model=DriverResponse,
    summary="Set driver availability",
    responses={409: {"description": "Driver is on an active ride."}},
)
@limiter.limit(settings.rate_limit)
async def set_status(
    request: Request,
    driver_id: int,
    body: DriverStatusRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.driver_pool(db).set_status(driver_id, body.status)
    await db.commit()
    return await _reload(db, driver_id)


@router.patch(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Update driver position",
)
@limiter.limit(settings.rate_limit)
async def set_location(
    request: Request,
    driver_id: int,
    body: DriverLocationRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.driver_pool(db).set_location(driver_id, body.lat, body.lng)
    await db.commit()
    return await _reload(db, driver_id)


async def _reload(db: AsyncSession, driver_id: int):
    driver = await DriverRepository(db).get_by_id(driver_id)
    if driver is None:
        raise NotFoundError("Driver record not found")
    await db.refresh(driver)
    return driver
