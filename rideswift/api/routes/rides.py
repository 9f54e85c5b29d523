"""
Ride endpoints
==============

POST  /api/v1/rides/estimate             -- fare quotes (one tier or all)
POST  /api/v1/rides                      -- book a ride (201)
GET   /api/v1/rides/active?rider_id=     -- rider's live ride, or null
GET   /api/v1/rides/available            -- rides waiting for a driver
GET   /api/v1/rides/{ride_id}?user_id=   -- ride detail for a party
POST  /api/v1/rides/{ride_id}/accept     -- driver accepts (409 if taken)
POST  /api/v1/rides/{ride_id}/decline    -- driver declines (no-op)
POST  /api/v1/rides/{ride_id}/arrive     -- driver at pickup
POST  /api/v1/rides/{ride_id}/start      -- trip started
POST  /api/v1/rides/{ride_id}/complete   -- trip finished, fare settled
PATCH /api/v1/rides/{ride_id}/cancel     -- rider cancels
POST  /api/v1/rides/{ride_id}/simulate   -- demo auto-progression
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.api.dependencies import get_db, get_runtime
from rideswift.api.middleware import limiter
from rideswift.api.schemas import (
    CancelRideRequest,
    DriverActionRequest,
    FareEstimateRequest,
    FareEstimateResponse,
    RideCreateRequest,
    RideResponse,
    SimulationResponse,
)
from rideswift.config import settings
from rideswift.domain.errors import NotFoundError
from rideswift.infrastructure.repositories import DriverRepository, RideRepository
from rideswift.runtime import Runtime

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "/estimate",
    response_model=list[FareEstimateResponse],
    summary="Estimate fares",
    description="Falls back to a great-circle estimate when the distance provider is down.",
)
@limiter.limit(settings.rate_limit)
async def estimate_fares(
    request: Request,
    body: FareEstimateRequest,
    runtime: Runtime = Depends(get_runtime),
):
    pickup, dropoff = body.pickup.to_location(), body.dropoff.to_location()
    if body.tier is not None:
        estimates = [await runtime.quoter.quote(pickup, dropoff, body.tier)]
    else:
        estimates = await runtime.quoter.quote_all(pickup, dropoff)
    return [FareEstimateResponse.from_estimate(e) for e in estimates]


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Book a ride",
    responses={409: {"description": "Rider already has an active ride."}},
)
@limiter.limit(settings.rate_limit)
async def book_ride(
    request: Request,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.matcher(db).book_ride(
        body.rider_id,
        body.pickup.to_location(),
        body.dropoff.to_location(),
        [stop.to_location() for stop in body.stops],
        tier=body.ride_type,
        payment_method=body.payment_method,
        promo_code=body.promo_code,
        promo_required=body.promo_required,
        idempotency_key=body.idempotency_key,
    )


@router.get(
    "/active",
    response_model=Optional[RideResponse],
    summary="The rider's live ride, if any",
)
@limiter.limit(settings.rate_limit)
async def get_active_ride(
    request: Request,
    rider_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_live_for_rider(rider_id)


@router.get(
    "/available",
    response_model=list[RideResponse],
    summary="Rides waiting for a driver",
)
@limiter.limit(settings.rate_limit)
async def get_available_rides(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_available(limit)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride detail",
    description="Only the rider or the assigned driver's user may read a ride.",
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: str,
    user_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_by_id(ride_id)
    if ride is None:
        raise NotFoundError("Ride not found")
    if ride.rider_id == user_id:
        return ride
    if ride.driver_id is not None:
        driver = await DriverRepository(db).get_by_id(ride.driver_id)
        if driver is not None and driver.user_id == user_id:
            return ride
    raise NotFoundError("Ride not found")


# ── Driver actions ────────────────────────────────────────────────────


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a ride",
    responses={409: {"description": "Another driver accepted first."}},
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.state_machine(db).accept(ride_id, body.driver_id)


@router.post("/{ride_id}/decline", status_code=204, summary="Decline a ride")
@limiter.limit(settings.rate_limit)
async def decline_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.state_machine(db).decline(ride_id, body.driver_id)


@router.post("/{ride_id}/arrive", response_model=RideResponse, summary="Arrived at pickup")
@limiter.limit(settings.rate_limit)
async def arrive(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.state_machine(db).arrive(ride_id, body.driver_id)


@router.post("/{ride_id}/start", response_model=RideResponse, summary="Start the trip")
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.state_machine(db).start(ride_id, body.driver_id)


@router.post(
    "/{ride_id}/complete", response_model=RideResponse, summary="Complete the trip"
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.state_machine(db).complete(ride_id, body.driver_id)


# ── Rider actions ─────────────────────────────────────────────────────


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Cancels any ride that is not yet completed. "
        "An assigned driver is released back to online."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: CancelRideRequest,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    ride = await runtime.state_machine(db).cancel(ride_id, body.rider_id, body.reason)
    if runtime.scheduler is not None:
        await runtime.scheduler.cancel(ride_id)
    return ride


@router.post(
    "/{ride_id}/simulate",
    status_code=202,
    response_model=SimulationResponse,
    summary="Auto-progress a ride (demo only)",
)
@limiter.limit(settings.rate_limit)
async def simulate_ride(
    request: Request,
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    if runtime.scheduler is None:
        raise NotFoundError("Ride simulation is disabled")
    if await RideRepository(db).get_by_id(ride_id) is None:
        raise NotFoundError("Ride not found")
    scheduled = runtime.scheduler.schedule(ride_id)
    return SimulationResponse(ride_id=ride_id, scheduled=scheduled)
