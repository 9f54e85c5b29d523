"""
Fare quoting.

Distance and duration come from an external distance-matrix provider
when one is configured.  Every failure mode (missing key, timeout,
non-OK element, transport error) falls back to Haversine distance with a
synthetic duration, so quoting never raises: it is the availability
floor of the booking path.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

import httpx

from rideswift.config import settings
from rideswift.domain.distance import haversine_km
from rideswift.domain.entities import FareEstimate, Location, TravelEstimate
from rideswift.domain.enums import RideTier
from rideswift.domain.errors import UpstreamUnavailable
from rideswift.domain.pricing import (
    RATE_CARD,
    SurgePolicy,
    TimeOfDaySurge,
    price_fare,
)

logger = logging.getLogger(__name__)


class DistanceProvider(ABC):
    @abstractmethod
    async def estimate_travel(
        self, origin: Location, destination: Location
    ) -> TravelEstimate: ...


class GoogleDistanceMatrixProvider(DistanceProvider):
    """Google Distance Matrix client.  Raises ``UpstreamUnavailable``."""

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = settings.distance_matrix_url,
        timeout_seconds: float = settings.distance_timeout_seconds,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url
        self.timeout = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def estimate_travel(
        self, origin: Location, destination: Location
    ) -> TravelEstimate:
        if not self.api_key:
            raise UpstreamUnavailable("No distance provider API key configured")

        try:
            resp = await self._client.get(
                self.base_url,
                params={
                    "origins": f"{origin.latitude},{origin.longitude}",
                    "destinations": f"{destination.latitude},{destination.longitude}",
                    "key": self.api_key,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"Distance provider request failed: {exc}") from exc

        try:
            element = payload["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError):
            raise UpstreamUnavailable("Distance provider returned no results")
        if element.get("status") != "OK":
            raise UpstreamUnavailable(
                f"Distance provider element status {element.get('status')!r}"
            )

        return TravelEstimate(
            distance_meters=float(element["distance"]["value"]),
            duration_seconds=float(element["duration"]["value"]),
            source="provider",
        )


class FareQuoter:
    """High-level API used by the matcher and the estimate endpoint."""

    def __init__(
        self,
        provider: Optional[DistanceProvider] = None,
        surge_policy: Optional[SurgePolicy] = None,
        timeout_seconds: float = settings.distance_timeout_seconds,
        minutes_per_km: float = settings.fallback_minutes_per_km,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.provider = provider
        self.surge_policy = surge_policy or TimeOfDaySurge(settings.surge_multiplier)
        self.timeout = timeout_seconds
        self.minutes_per_km = minutes_per_km
        self.clock = clock

    def fallback_travel(
        self, origin: Location, destination: Location
    ) -> TravelEstimate:
        km = haversine_km(
            origin.latitude, origin.longitude,
            destination.latitude, destination.longitude,
        )
        return TravelEstimate(
            distance_meters=km * 1000,
            duration_seconds=km * self.minutes_per_km * 60,
            source="haversine",
        )

    async def travel(self, origin: Location, destination: Location) -> TravelEstimate:
        if self.provider is not None:
            try:
                return await asyncio.wait_for(
                    self.provider.estimate_travel(origin, destination),
                    timeout=self.timeout,
                )
            except Exception as exc:
                logger.warning(
                    "Distance provider unavailable, using haversine fallback: %s", exc
                )
        return self.fallback_travel(origin, destination)

    async def quote(
        self, origin: Location, destination: Location, tier: RideTier
    ) -> FareEstimate:
        travel = await self.travel(origin, destination)
        return price_fare(tier, travel, self.surge_policy.multiplier(self.clock()))

    async def quote_all(
        self, origin: Location, destination: Location
    ) -> list[FareEstimate]:
        """One estimate per tier, sharing a single travel lookup."""
        travel = await self.travel(origin, destination)
        surge = self.surge_policy.multiplier(self.clock())
        return [price_fare(tier, travel, surge) for tier in RATE_CARD]
