"""
Admin / observability endpoints
===============================

GET /api/v1/admin/pool   -- driver counts by status and live ride count
GET /api/v1/admin/health -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.api.dependencies import get_db
from rideswift.api.middleware import limiter
from rideswift.api.schemas import HealthResponse, PoolResponse
from rideswift.config import settings
from rideswift.infrastructure.repositories import DriverRepository, RideRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/pool",
    response_model=PoolResponse,
    summary="Driver supply and live ride demand",
)
@limiter.limit(settings.rate_limit)
async def get_pool(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    drivers = await DriverRepository(db).count_by_status()
    live_rides = await RideRepository(db).count_live()
    return PoolResponse(drivers=drivers, live_rides=live_rides)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
