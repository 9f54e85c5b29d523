"""Unit tests for fare pricing, promo discounts and fare quoting."""

import asyncio
from datetime import datetime

import httpx
import pytest

from rideswift.domain.distance import haversine_km
from rideswift.domain.entities import Location, PromoTerms, TravelEstimate
from rideswift.domain.enums import DiscountType, RideTier
from rideswift.domain.errors import UpstreamUnavailable
from rideswift.domain.pricing import (
    RATE_CARD,
    FlatSurge,
    TimeOfDaySurge,
    apply_discount,
    compute_discount,
    driver_payout,
    price_fare,
)
from rideswift.services.fares import (
    DistanceProvider,
    FareQuoter,
    GoogleDistanceMatrixProvider,
)

ORIGIN = Location(40.0, -75.0)
DESTINATION = Location(40.1, -75.1)

TEN_KM_TWENTY_MIN = TravelEstimate(distance_meters=10_000, duration_seconds=1_200)


class TestPriceFare:
    def test_economy_fare(self):
        estimate = price_fare(RideTier.ECONOMY, TEN_KM_TWENTY_MIN)
        assert estimate.estimated_fare == 13.9  # 2.5 + 10*0.9 + 20*0.12

    def test_breakdown_is_rounded(self):
        b = price_fare(RideTier.ECONOMY, TEN_KM_TWENTY_MIN).breakdown
        assert b.base_fare == 2.5
        assert b.distance_fare == 9.0
        assert b.time_fare == 2.4
        assert b.surge_factor == 1.0

    def test_surge_multiplies_whole_fare(self):
        estimate = price_fare(RideTier.ECONOMY, TEN_KM_TWENTY_MIN, surge_factor=1.3)
        assert estimate.estimated_fare == 18.07

    def test_zero_distance_floors_at_base(self):
        estimate = price_fare(RideTier.PREMIUM, TravelEstimate(0, 0))
        assert estimate.estimated_fare == RATE_CARD[RideTier.PREMIUM].base

    def test_tiers_are_ordered_by_price(self):
        fares = {t: price_fare(t, TEN_KM_TWENTY_MIN).estimated_fare for t in RideTier}
        assert fares[RideTier.AUTO] < fares[RideTier.ECONOMY]
        assert fares[RideTier.ECONOMY] < fares[RideTier.PREMIUM] < fares[RideTier.SUV]


class TestTimeOfDaySurge:
    def setup_method(self):
        self.policy = TimeOfDaySurge(surge=1.3)

    @pytest.mark.parametrize("hour", [7, 8, 9, 17, 18, 19, 20])
    def test_peak_hours(self, hour):
        assert self.policy.multiplier(datetime(2024, 5, 1, hour, 30)) == 1.3

    @pytest.mark.parametrize("hour", [0, 6, 10, 12, 16, 21, 23])
    def test_off_peak_hours(self, hour):
        assert self.policy.multiplier(datetime(2024, 5, 1, hour, 0)) == 1.0

    def test_flat_surge(self):
        assert FlatSurge(2.0).multiplier(datetime(2024, 5, 1, 3)) == 2.0


class TestDiscounts:
    def test_percentage_capped_by_max_discount(self):
        terms = PromoTerms("SAVE10", DiscountType.PERCENTAGE, 10.0, max_discount=5.0)
        discount = compute_discount(terms, 60.0)
        assert discount == 5.0
        assert apply_discount(60.0, discount) == 55.0

    def test_percentage_below_cap(self):
        terms = PromoTerms("SAVE10", DiscountType.PERCENTAGE, 10.0, max_discount=5.0)
        assert compute_discount(terms, 30.0) == 3.0

    def test_percentage_uncapped(self):
        terms = PromoTerms("HALF", DiscountType.PERCENTAGE, 50.0)
        assert compute_discount(terms, 60.0) == 30.0

    def test_fixed_discount_ignores_cap(self):
        terms = PromoTerms("FLAT5", DiscountType.FIXED, 5.0, max_discount=1.0)
        assert compute_discount(terms, 60.0) == 5.0

    def test_discounted_fare_never_negative(self):
        assert apply_discount(3.0, 5.0) == 0.0

    def test_driver_payout(self):
        assert driver_payout(20.0, 0.85) == 17.0


# ── Fare quoting ──────────────────────────────────────────────────────


class _FailingProvider(DistanceProvider):
    async def estimate_travel(self, origin, destination):
        raise UpstreamUnavailable("down")


class _SlowProvider(DistanceProvider):
    async def estimate_travel(self, origin, destination):
        await asyncio.sleep(5)
        return TravelEstimate(1, 1)


class _FixedProvider(DistanceProvider):
    async def estimate_travel(self, origin, destination):
        return TravelEstimate(10_000, 1_200)


def _google(handler, api_key="test-key") -> GoogleDistanceMatrixProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleDistanceMatrixProvider(api_key, client=client)


def _matrix(status="OK", meters=12_345, seconds=900):
    return {
        "status": "OK",
        "rows": [
            {
                "elements": [
                    {
                        "status": status,
                        "distance": {"value": meters},
                        "duration": {"value": seconds},
                    }
                ]
            }
        ],
    }


class TestFareQuoter:
    @pytest.mark.asyncio
    async def test_without_provider_uses_haversine(self):
        quoter = FareQuoter(surge_policy=FlatSurge(), minutes_per_km=2.0)
        travel = await quoter.travel(ORIGIN, DESTINATION)
        km = haversine_km(40.0, -75.0, 40.1, -75.1)
        assert travel.source == "haversine"
        assert travel.distance_meters == pytest.approx(km * 1000)
        assert travel.duration_seconds == pytest.approx(km * 120)

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back(self):
        quoter = FareQuoter(_FailingProvider(), surge_policy=FlatSurge())
        estimate = await quoter.quote(ORIGIN, DESTINATION, RideTier.ECONOMY)
        fallback = quoter.fallback_travel(ORIGIN, DESTINATION)
        assert estimate.distance_meters == pytest.approx(fallback.distance_meters)

    @pytest.mark.asyncio
    async def test_provider_timeout_falls_back(self):
        quoter = FareQuoter(_SlowProvider(), surge_policy=FlatSurge(), timeout_seconds=0.01)
        travel = await quoter.travel(ORIGIN, DESTINATION)
        assert travel.source == "haversine"

    @pytest.mark.asyncio
    async def test_provider_result_is_priced(self):
        quoter = FareQuoter(_FixedProvider(), surge_policy=FlatSurge())
        estimate = await quoter.quote(ORIGIN, DESTINATION, RideTier.ECONOMY)
        assert estimate.estimated_fare == 13.9
        assert estimate.distance_km == 10.0
        assert estimate.duration_minutes == 20.0

    @pytest.mark.asyncio
    async def test_surge_comes_from_clock(self):
        quoter = FareQuoter(
            _FixedProvider(),
            surge_policy=TimeOfDaySurge(1.3),
            clock=lambda: datetime(2024, 5, 1, 8, 15),
        )
        estimate = await quoter.quote(ORIGIN, DESTINATION, RideTier.ECONOMY)
        assert estimate.breakdown.surge_factor == 1.3
        assert estimate.estimated_fare == 18.07

    @pytest.mark.asyncio
    async def test_quote_all_covers_every_tier_in_order(self):
        quoter = FareQuoter(_FixedProvider(), surge_policy=FlatSurge())
        estimates = await quoter.quote_all(ORIGIN, DESTINATION)
        assert [e.tier for e in estimates] == list(RATE_CARD)
        assert {e.distance_meters for e in estimates} == {10_000}


class TestGoogleDistanceMatrixProvider:
    @pytest.mark.asyncio
    async def test_parses_first_element(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json=_matrix())

        travel = await _google(handler).estimate_travel(ORIGIN, DESTINATION)
        assert travel.distance_meters == 12_345
        assert travel.duration_seconds == 900
        assert travel.source == "provider"
        assert seen["origins"] == "40.0,-75.0"
        assert seen["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_non_ok_element_raises(self):
        provider = _google(lambda r: httpx.Response(200, json=_matrix("ZERO_RESULTS")))
        with pytest.raises(UpstreamUnavailable):
            await provider.estimate_travel(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        provider = _google(lambda r: httpx.Response(500))
        with pytest.raises(UpstreamUnavailable):
            await provider.estimate_travel(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_empty_payload_raises(self):
        provider = _google(lambda r: httpx.Response(200, json={"rows": []}))
        with pytest.raises(UpstreamUnavailable, match="no results"):
            await provider.estimate_travel(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_missing_key_raises_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(UpstreamUnavailable, match="API key"):
            await _google(handler, api_key="").estimate_travel(ORIGIN, DESTINATION)

    @pytest.mark.asyncio
    async def test_quoter_absorbs_provider_errors(self):
        provider = _google(lambda r: httpx.Response(503))
        quoter = FareQuoter(provider, surge_policy=FlatSurge())
        estimate = await quoter.quote(ORIGIN, DESTINATION, RideTier.AUTO)
        assert estimate.estimated_fare >= RATE_CARD[RideTier.AUTO].base
