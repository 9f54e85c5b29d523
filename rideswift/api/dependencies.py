"""FastAPI dependency injection helpers."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from rideswift.infrastructure.database import async_session_factory
from rideswift.runtime import Runtime


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_runtime(request: Request) -> Runtime:
    """The service wiring built in the app lifespan."""
    return request.app.state.runtime
