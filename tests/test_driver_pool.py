"""DriverPool: nearest-driver queries, claiming and self-service status."""

import pytest

from rideswift.config import settings
from rideswift.domain.enums import DriverStatus, RideTier
from rideswift.domain.errors import ConflictError, NotFoundError, ValidationError
from rideswift.domain.matching import driver_h3_cell
from rideswift.infrastructure.models import DriverModel
from rideswift.services.driver_pool import DriverPool
from tests.conftest import make_driver, reload


class TestFindNearest:
    @pytest.mark.asyncio
    async def test_returns_closest_with_distance(self, db_session):
        await make_driver(db_session, 40.05, -75.0, name="Far")
        near = await make_driver(db_session, 40.01, -75.0, name="Near")
        candidate = await DriverPool(db_session).find_nearest(40.0, -75.0, RideTier.ECONOMY)
        assert candidate.driver_id == near.id
        assert candidate.user_id == near.user_id
        assert 1.0 < candidate.distance_km < 1.2

    @pytest.mark.asyncio
    async def test_none_when_pool_is_empty(self, db_session):
        assert await DriverPool(db_session).find_nearest(40.0, -75.0, None) is None

    @pytest.mark.asyncio
    async def test_radius_is_configurable(self, db_session):
        await make_driver(db_session, 40.05, -75.0)  # ~5.6 km
        assert await DriverPool(db_session, radius_km=5.0).find_nearest(40.0, -75.0, None) is None
        assert await DriverPool(db_session, radius_km=6.0).find_nearest(40.0, -75.0, None)

    @pytest.mark.asyncio
    async def test_unbounded_ignores_radius(self, db_session):
        far = await make_driver(db_session, 41.0, -75.0)
        pool = DriverPool(db_session)
        assert await pool.find_nearest(40.0, -75.0, None) is None
        candidate = await pool.find_nearest(40.0, -75.0, None, unbounded=True)
        assert candidate.driver_id == far.id

    @pytest.mark.asyncio
    async def test_exclude(self, db_session):
        near = await make_driver(db_session, 40.01, -75.0, name="Near")
        other = await make_driver(db_session, 40.02, -75.0, name="Other")
        candidate = await DriverPool(db_session).find_nearest(
            40.0, -75.0, None, exclude={near.id}
        )
        assert candidate.driver_id == other.id

    @pytest.mark.asyncio
    async def test_find_is_read_only(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0)
        pool = DriverPool(db_session)
        first = await pool.find_nearest(40.0, -75.0, None)
        second = await pool.find_nearest(40.0, -75.0, None)
        assert first.driver_id == second.driver_id == driver.id
        assert (await reload(db_session, DriverModel, driver.id)).status == DriverStatus.ONLINE


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_marks_busy(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0)
        pool = DriverPool(db_session)
        candidate = await pool.claim_nearest(40.0, -75.0, RideTier.ECONOMY)
        await db_session.commit()
        assert candidate.driver_id == driver.id
        assert (await reload(db_session, DriverModel, driver.id)).status == DriverStatus.BUSY
        assert await pool.claim_nearest(40.0, -75.0, RideTier.ECONOMY) is None

    @pytest.mark.asyncio
    async def test_release_and_complete(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0, status=DriverStatus.BUSY)
        pool = DriverPool(db_session)
        assert await pool.release(driver.id) is True
        assert await pool.release(driver.id) is False  # already online
        await pool.mark_busy(driver.id)
        await pool.record_completion(driver.id, 12.5)
        await db_session.commit()
        row = await reload(db_session, DriverModel, driver.id)
        assert row.status == DriverStatus.ONLINE
        assert row.total_rides == 1
        assert row.total_earnings == 12.5

    @pytest.mark.asyncio
    async def test_mark_busy_only_from_online(self, db_session):
        online = await make_driver(db_session, 40.01, -75.0, name="Online")
        offline = await make_driver(
            db_session, 40.01, -75.0, name="Offline", status=DriverStatus.OFFLINE
        )
        pool = DriverPool(db_session)

        await pool.mark_busy(online.id)
        with pytest.raises(ConflictError, match="already has an active ride"):
            await pool.mark_busy(online.id)
        with pytest.raises(ConflictError, match="offline"):
            await pool.mark_busy(offline.id)
        with pytest.raises(NotFoundError):
            await pool.mark_busy(999)
        await db_session.commit()
        assert (await reload(db_session, DriverModel, offline.id)).status == DriverStatus.OFFLINE


class TestSelfService:
    @pytest.mark.asyncio
    async def test_go_offline_and_online(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0)
        pool = DriverPool(db_session)
        await pool.set_status(driver.id, DriverStatus.OFFLINE)
        assert await pool.find_nearest(40.0, -75.0, None) is None
        await pool.set_status(driver.id, DriverStatus.ONLINE)
        assert (await pool.find_nearest(40.0, -75.0, None)).driver_id == driver.id

    @pytest.mark.asyncio
    async def test_cannot_set_busy_manually(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0)
        with pytest.raises(ValidationError):
            await DriverPool(db_session).set_status(driver.id, DriverStatus.BUSY)

    @pytest.mark.asyncio
    async def test_busy_driver_cannot_go_offline(self, db_session):
        driver = await make_driver(db_session, 40.01, -75.0, status=DriverStatus.BUSY)
        with pytest.raises(ConflictError):
            await DriverPool(db_session).set_status(driver.id, DriverStatus.OFFLINE)

    @pytest.mark.asyncio
    async def test_unknown_driver(self, db_session):
        pool = DriverPool(db_session)
        with pytest.raises(NotFoundError):
            await pool.set_status(999, DriverStatus.ONLINE)
        with pytest.raises(NotFoundError):
            await pool.set_location(999, 40.0, -75.0)

    @pytest.mark.asyncio
    async def test_location_update_moves_cell(self, db_session):
        driver = await make_driver(db_session, 41.0, -75.0)
        pool = DriverPool(db_session)
        assert await pool.find_nearest(40.0, -75.0, None) is None

        await pool.set_location(driver.id, 40.01, -75.0)
        await db_session.commit()

        row = await reload(db_session, DriverModel, driver.id)
        assert row.current_lat == 40.01
        assert row.h3_cell == driver_h3_cell(40.01, -75.0, settings.h3_resolution)
        assert (await pool.find_nearest(40.0, -75.0, None)).driver_id == driver.id

    @pytest.mark.asyncio
    async def test_location_is_validated(self, db_session):
        driver = await make_driver(db_session, 40.0, -75.0)
        with pytest.raises(ValidationError, match="Latitude"):
            await DriverPool(db_session).set_location(driver.id, 95.0, -75.0)
