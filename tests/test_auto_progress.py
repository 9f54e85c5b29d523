"""Demo auto-progression: timed steps through the real state machine."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from rideswift.domain.enums import DriverStatus, RideStatus
from rideswift.infrastructure.models import DriverModel, RideModel
from rideswift.workers.auto_progress import AutoProgressScheduler
from tests.conftest import DROPOFF, PICKUP, make_driver, make_rider, reload


@pytest.fixture
def redis():
    mock_redis = AsyncMock()
    mock_redis.set = AsyncMock(return_value=True)
    mock_redis.eval = AsyncMock(return_value=1)
    return mock_redis


def _scheduler(runtime, session_factory, redis, delay=0.0):
    async def redis_factory():
        return redis

    return AutoProgressScheduler(
        session_factory,
        runtime.state_machine,
        redis_factory=redis_factory,
        accept_delay=delay,
        start_delay=delay,
        complete_delay=delay,
    )


@pytest_asyncio.fixture
async def searching_ride(runtime, session_factory):
    """A searching ride plus one online driver far outside the match radius."""
    async with session_factory() as session:
        rider = await make_rider(session)
        ride = await runtime.matcher(session).book_ride(rider.id, PICKUP, DROPOFF)
        driver = await make_driver(session, 40.5, -75.0)
        return ride.id, rider.id, driver.id


class TestAutoProgress:
    @pytest.mark.asyncio
    async def test_drives_ride_to_completion(
        self, runtime, session_factory, redis, searching_ride
    ):
        ride_id, _, driver_id = searching_ride
        scheduler = _scheduler(runtime, session_factory, redis)

        assert scheduler.schedule(ride_id) is True
        await scheduler.wait(ride_id)

        async with session_factory() as session:
            ride = await reload(session, RideModel, ride_id)
            driver = await reload(session, DriverModel, driver_id)
        assert ride.status == RideStatus.COMPLETED
        assert ride.driver_id == driver_id
        assert ride.final_fare == ride.estimated_fare
        assert driver.status == DriverStatus.ONLINE
        assert driver.total_rides == 1
        redis.set.assert_awaited_once()
        redis.eval.assert_awaited_once()
        assert not scheduler.is_scheduled(ride_id)

    @pytest.mark.asyncio
    async def test_schedule_is_keyed_by_ride(
        self, runtime, session_factory, redis, searching_ride
    ):
        ride_id, _, _ = searching_ride
        scheduler = _scheduler(runtime, session_factory, redis, delay=10)
        assert scheduler.schedule(ride_id) is True
        assert scheduler.schedule(ride_id) is False
        assert await scheduler.cancel(ride_id) is True
        assert await scheduler.cancel(ride_id) is False

    @pytest.mark.asyncio
    async def test_cancelled_job_leaves_ride_untouched(
        self, runtime, session_factory, redis, searching_ride
    ):
        ride_id, _, _ = searching_ride
        scheduler = _scheduler(runtime, session_factory, redis, delay=10)
        scheduler.schedule(ride_id)
        await scheduler.shutdown()

        async with session_factory() as session:
            ride = await reload(session, RideModel, ride_id)
        assert ride.status == RideStatus.SEARCHING

    @pytest.mark.asyncio
    async def test_real_cancellation_wins(
        self, runtime, session_factory, redis, searching_ride
    ):
        ride_id, rider_id, driver_id = searching_ride
        async with session_factory() as session:
            await runtime.state_machine(session).cancel(ride_id, rider_id)

        scheduler = _scheduler(runtime, session_factory, redis)
        scheduler.schedule(ride_id)
        await scheduler.wait(ride_id)

        async with session_factory() as session:
            ride = await reload(session, RideModel, ride_id)
            driver = await reload(session, DriverModel, driver_id)
        assert ride.status == RideStatus.CANCELLED
        assert driver.status == DriverStatus.ONLINE

    @pytest.mark.asyncio
    async def test_no_driver_stops_quietly(self, runtime, session_factory, redis):
        async with session_factory() as session:
            rider = await make_rider(session)
            ride = await runtime.matcher(session).book_ride(rider.id, PICKUP, DROPOFF)
            ride_id = ride.id

        scheduler = _scheduler(runtime, session_factory, redis)
        scheduler.schedule(ride_id)
        await scheduler.wait(ride_id)

        async with session_factory() as session:
            assert (await reload(session, RideModel, ride_id)).status == RideStatus.SEARCHING

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips(
        self, runtime, session_factory, redis, searching_ride
    ):
        ride_id, _, _ = searching_ride
        redis.set = AsyncMock(return_value=None)
        scheduler = _scheduler(runtime, session_factory, redis)
        scheduler.schedule(ride_id)
        await scheduler.wait(ride_id)

        async with session_factory() as session:
            assert (await reload(session, RideModel, ride_id)).status == RideStatus.SEARCHING
        redis.eval.assert_not_awaited()
