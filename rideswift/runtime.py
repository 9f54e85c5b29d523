"""
Process-wide service wiring.

One ``Runtime`` is built in the FastAPI lifespan and stored on
``app.state``.  It holds the long-lived collaborators (fare quoter,
notifier, side-effect dispatcher, demo scheduler) and builds the
per-request services around a request's ``AsyncSession``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideswift.config import Settings
from rideswift.infrastructure.database import async_session_factory
from rideswift.infrastructure.redis_client import get_redis
from rideswift.services.completion import CompletionSink, LoggingCompletionSink
from rideswift.services.driver_pool import DriverPool
from rideswift.services.fares import FareQuoter, GoogleDistanceMatrixProvider
from rideswift.services.lifecycle import RideStateMachine
from rideswift.services.matcher import RideMatcher
from rideswift.services.notifications import Notifier, RedisNotificationSink
from rideswift.services.promos import PromoLedger
from rideswift.workers.auto_progress import AutoProgressScheduler
from rideswift.workers.dispatcher import SideEffectDispatcher


@dataclass
class Runtime:
    settings: Settings
    quoter: FareQuoter
    notifier: Notifier
    completion_sink: CompletionSink
    dispatcher: SideEffectDispatcher
    scheduler: Optional[AutoProgressScheduler] = None
    provider: Optional[GoogleDistanceMatrixProvider] = None

    def driver_pool(self, session: AsyncSession) -> DriverPool:
        return DriverPool(
            session,
            radius_km=self.settings.match_radius_km,
            resolution=self.settings.h3_resolution,
            max_claim_attempts=self.settings.max_claim_attempts,
        )

    def promo_ledger(self, session: AsyncSession) -> PromoLedger:
        return PromoLedger(session)

    def matcher(self, session: AsyncSession) -> RideMatcher:
        return RideMatcher(
            session,
            self.quoter,
            self.notifier,
            pool=self.driver_pool(session),
            promos=self.promo_ledger(session),
            broadcast_limit=self.settings.broadcast_limit,
        )

    def state_machine(self, session: AsyncSession) -> RideStateMachine:
        return RideStateMachine(
            session,
            self.notifier,
            self.completion_sink,
            self.dispatcher,
            pool=self.driver_pool(session),
            driver_share=self.settings.driver_share,
            currency=self.settings.currency,
            minutes_per_km=self.settings.fallback_minutes_per_km,
        )

    async def start(self) -> None:
        await self.dispatcher.start()

    async def close(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.shutdown()
        await self.dispatcher.stop()
        if self.provider is not None:
            await self.provider.aclose()


async def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> Runtime:
    """Production wiring: Google distances, Redis notifications, demo scheduler."""
    provider = None
    if settings.google_maps_api_key:
        provider = GoogleDistanceMatrixProvider(
            settings.google_maps_api_key,
            base_url=settings.distance_matrix_url,
            timeout_seconds=settings.distance_timeout_seconds,
        )
    dispatcher = SideEffectDispatcher(
        workers=settings.side_effect_workers,
        max_attempts=settings.side_effect_max_attempts,
        backoff_seconds=settings.side_effect_backoff_seconds,
    )
    redis = await get_redis()
    runtime = Runtime(
        settings=settings,
        quoter=FareQuoter(
            provider,
            timeout_seconds=settings.distance_timeout_seconds,
            minutes_per_km=settings.fallback_minutes_per_km,
        ),
        notifier=Notifier(RedisNotificationSink(redis, session_factory), dispatcher),
        completion_sink=LoggingCompletionSink(),
        dispatcher=dispatcher,
        provider=provider,
    )
    if settings.demo_simulation_enabled:
        runtime.scheduler = AutoProgressScheduler(
            session_factory,
            runtime.state_machine,
            accept_delay=settings.auto_progress_accept_delay,
            start_delay=settings.auto_progress_start_delay,
            complete_delay=settings.auto_progress_complete_delay,
        )
    return runtime
