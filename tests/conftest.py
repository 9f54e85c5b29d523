"""
Shared test fixtures.

Uses a temp-file SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` so that
concurrently running sessions really are separate connections, which is
what the race tests need.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rideswift.config import settings
from rideswift.domain.entities import Location, Receipt
from rideswift.domain.enums import (
    DiscountType,
    DriverStatus,
    NotificationType,
    RideTier,
)
from rideswift.domain.matching import driver_h3_cell
from rideswift.domain.pricing import FlatSurge
from rideswift.infrastructure.database import Base
from rideswift.infrastructure.models import DriverModel, PromoCodeModel, UserModel
from rideswift.runtime import Runtime
from rideswift.services.completion import CompletionSink
from rideswift.services.fares import FareQuoter
from rideswift.services.notifications import NotificationSink, Notifier
from rideswift.workers.dispatcher import SideEffectDispatcher

# A ~14 km trip across town
PICKUP = Location(40.0, -75.0, "1 Market St")
DROPOFF = Location(40.1, -75.1, "500 Ridge Ave")


# ── Recording sinks ───────────────────────────────────────────────────


class RecordingNotificationSink(NotificationSink):
    def __init__(self):
        self.events: list[tuple[int, NotificationType, dict[str, Any]]] = []

    async def notify(
        self, target_id: int, event_type: NotificationType, payload: dict[str, Any]
    ) -> None:
        self.events.append((target_id, event_type, payload))

    def of_type(self, event_type: NotificationType) -> list[tuple[int, dict]]:
        return [(t, p) for t, e, p in self.events if e is event_type]


class RecordingCompletionSink(CompletionSink):
    def __init__(self):
        self.receipts: list[tuple[str, Receipt]] = []
        self.footprints: list[tuple[int, str, RideTier, float]] = []

    async def send_receipt(self, rider_email: str, receipt: Receipt) -> None:
        self.receipts.append((rider_email, receipt))

    async def record_carbon_footprint(
        self, rider_id: int, ride_id: str, tier: RideTier, distance_km: float
    ) -> None:
        self.footprints.append((rider_id, ride_id, tier, distance_km))


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh database per test: create tables, yield, dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def dispatcher() -> AsyncGenerator[SideEffectDispatcher, None]:
    dispatcher = SideEffectDispatcher(workers=1, max_attempts=2, backoff_seconds=0.01)
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def completion_sink() -> RecordingCompletionSink:
    return RecordingCompletionSink()


@pytest.fixture
def runtime(sink, completion_sink, dispatcher) -> Runtime:
    """Offline wiring: haversine fares, no surge, recording sinks."""
    return Runtime(
        settings=settings,
        quoter=FareQuoter(surge_policy=FlatSurge()),
        notifier=Notifier(sink, dispatcher),
        completion_sink=completion_sink,
        dispatcher=dispatcher,
    )


# ── Data helpers ──────────────────────────────────────────────────────


async def make_rider(session: AsyncSession, name: str = "Test Rider") -> UserModel:
    rider = UserModel(name=name, email=f"{name.lower().replace(' ', '.')}@example.com")
    session.add(rider)
    await session.commit()
    return rider


async def make_driver(
    session: AsyncSession,
    lat: float,
    lng: float,
    *,
    name: str = "Test Driver",
    tier: Optional[RideTier] = RideTier.ECONOMY,
    status: DriverStatus = DriverStatus.ONLINE,
) -> DriverModel:
    user = UserModel(name=name, email=f"{name.lower().replace(' ', '.')}@drivers.example.com")
    session.add(user)
    await session.flush()
    driver = DriverModel(
        user_id=user.id,
        status=status,
        vehicle_type=tier,
        current_lat=lat,
        current_lng=lng,
        h3_cell=driver_h3_cell(lat, lng, settings.h3_resolution),
    )
    session.add(driver)
    await session.commit()
    return driver


async def make_promo(
    session: AsyncSession,
    code: str = "SAVE10",
    *,
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    value: float = 10.0,
    max_discount: Optional[float] = 5.0,
    min_fare: Optional[float] = None,
    usage_limit: int = 100,
    usage_count: int = 0,
    expires_in: timedelta = timedelta(days=30),
    is_active: bool = True,
) -> PromoCodeModel:
    promo = PromoCodeModel(
        code=code,
        discount_type=discount_type,
        discount_value=value,
        max_discount=max_discount,
        min_fare=min_fare,
        usage_limit=usage_limit,
        usage_count=usage_count,
        expires_at=datetime.now(timezone.utc) + expires_in,
        is_active=is_active,
    )
    session.add(promo)
    await session.commit()
    return promo


async def reload(session: AsyncSession, model, pk):
    """Read a row as committed, bypassing the identity map."""
    return await session.get(model, pk, populate_existing=True)
