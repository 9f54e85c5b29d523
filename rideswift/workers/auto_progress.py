"""
Demo Auto-Progression
=====================

``POST /rides/{id}/simulate`` hands a ride to this scheduler, which plays
the driver's part on a timer:

    (pending | searching) --accept--> accepted --start--> in_progress
                                                  --complete--> completed

Each ride gets one cancellable asyncio task keyed by its id.  A per-ride
Redis lock (``auto_progress:{ride_id}``) keeps a second API process from
simulating the same ride.

Before every step the ride is re-read in a fresh session and the step is
taken through the real ``RideStateMachine``, so a transition made
meanwhile by a real actor (most importantly a rider cancellation) wins:
the step either no longer applies or fails with a ``RideSwiftError`` and
the simulation stops.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideswift.config import settings
from rideswift.domain.enums import RideStatus, RideTier
from rideswift.domain.errors import RideSwiftError
from rideswift.infrastructure.locks import DistributedLock, LockNotAcquired
from rideswift.infrastructure.redis_client import get_redis
from rideswift.services.lifecycle import RideStateMachine

logger = logging.getLogger(__name__)

_AWAITING_DRIVER = {RideStatus.PENDING, RideStatus.SEARCHING}
_AWAITING_START = {RideStatus.ACCEPTED, RideStatus.DRIVER_ARRIVING}


class AutoProgressScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        build_state_machine: Callable[[AsyncSession], RideStateMachine],
        redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
        accept_delay: float = settings.auto_progress_accept_delay,
        start_delay: float = settings.auto_progress_start_delay,
        complete_delay: float = settings.auto_progress_complete_delay,
    ):
        self.session_factory = session_factory
        self.build_state_machine = build_state_machine
        self.redis_factory = redis_factory
        self.accept_delay = accept_delay
        self.start_delay = start_delay
        self.complete_delay = complete_delay
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def lock_ttl(self) -> int:
        return int(self.accept_delay + self.start_delay + self.complete_delay) + 30

    # ── Public API ────────────────────────────────────────────────────

    def schedule(self, ride_id: str) -> bool:
        """Start simulating *ride_id*.  False if it is already scheduled."""
        task = self._tasks.get(ride_id)
        if task is not None and not task.done():
            return False
        self._tasks[ride_id] = asyncio.create_task(
            self._run(ride_id), name=f"auto-progress-{ride_id}"
        )
        logger.info("Auto-progression scheduled for ride %s", ride_id)
        return True

    async def cancel(self, ride_id: str) -> bool:
        task = self._tasks.pop(ride_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-progression cancelled for ride %s", ride_id)
        return True

    def is_scheduled(self, ride_id: str) -> bool:
        task = self._tasks.get(ride_id)
        return task is not None and not task.done()

    async def wait(self, ride_id: str) -> None:
        """Block until the ride's simulation (if any) has finished."""
        task = self._tasks.get(ride_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        for ride_id in list(self._tasks):
            await self.cancel(ride_id)

    # ── Internals ─────────────────────────────────────────────────────

    async def _run(self, ride_id: str) -> None:
        try:
            redis = await self.redis_factory()
            async with DistributedLock.for_ride(
                redis, "auto_progress", ride_id, ttl_seconds=self.lock_ttl
            ):
                await self._progress(ride_id)
        except LockNotAcquired:
            logger.info("Ride %s is already being simulated elsewhere", ride_id)
        except RideSwiftError as exc:
            logger.info("Auto-progression of ride %s stopped: %s", ride_id, exc.message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unhandled error while simulating ride %s", ride_id)
        finally:
            if self._tasks.get(ride_id) is asyncio.current_task():
                del self._tasks[ride_id]

    async def _progress(self, ride_id: str) -> None:
        await asyncio.sleep(self.accept_delay)
        driver_id = await self._step_accept(ride_id)
        if driver_id is None:
            return

        await asyncio.sleep(self.start_delay)
        if not await self._step(ride_id, driver_id, _AWAITING_START, "start"):
            return

        await asyncio.sleep(self.complete_delay)
        await self._step(ride_id, driver_id, {RideStatus.IN_PROGRESS}, "complete")

    async def _step_accept(self, ride_id: str) -> Optional[int]:
        async with self.session_factory() as session:
            machine = self.build_state_machine(session)
            ride = await machine.rides.get_by_id(ride_id)
            if ride is None:
                return None
            status = RideStatus(ride.status)
            if status in _AWAITING_START or status is RideStatus.IN_PROGRESS:
                return ride.driver_id
            if status not in _AWAITING_DRIVER:
                logger.info("Ride %s is %s, nothing to simulate", ride_id, status.value)
                return None

            candidate = await machine.pool.find_nearest(
                ride.pickup_lat,
                ride.pickup_lng,
                RideTier(ride.ride_type),
                unbounded=True,
            )
            if candidate is None:
                logger.info("No online driver to simulate ride %s", ride_id)
                return None
            await machine.accept(ride_id, candidate.driver_id)
            return candidate.driver_id

    async def _step(
        self,
        ride_id: str,
        driver_id: int,
        expected: set[RideStatus],
        action: str,
    ) -> bool:
        async with self.session_factory() as session:
            machine = self.build_state_machine(session)
            ride = await machine.rides.get_by_id(ride_id)
            if ride is None:
                return False
            status = RideStatus(ride.status)
            if status not in expected:
                # already past this step, or taken over by a real action
                return status is RideStatus.IN_PROGRESS and action == "start"
            await getattr(machine, action)(ride_id, driver_id)
            return True
