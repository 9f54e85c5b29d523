"""
FastAPI application factory.

* Registers routes for rides, drivers, promos and admin.
* Builds the service runtime (side-effect dispatcher, fare quoter,
  notifier, demo scheduler) in the lifespan and tears it down on shutdown.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rideswift.api.middleware import limiter
from rideswift.api.routes import admin, drivers, promos, rides
from rideswift.config import settings
from rideswift.domain.errors import RideSwiftError
from rideswift.infrastructure.redis_client import close_redis
from rideswift.runtime import build_runtime

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers on startup; drain and stop them on shutdown."""
    runtime = await build_runtime(settings)
    await runtime.start()
    app.state.runtime = runtime
    yield
    await runtime.close()
    await close_redis()


async def domain_error_handler(request: Request, exc: RideSwiftError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(
        title="RideSwift API",
        description=(
            "On-demand ride matching: fare estimates, instant driver "
            "assignment, the ride lifecycle from request to settlement, "
            "and promo codes."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RideSwiftError, domain_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(promos.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
