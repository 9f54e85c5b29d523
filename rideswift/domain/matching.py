"""
Nearest-Driver Selection
========================

1. **Spatial Binning** -- every driver location update stores the H3
   cell (resolution 7, ~5.16 km²) the driver is in.
2. **Candidate Cells** -- a nearest-driver query expands the pickup cell
   into a ``grid_disk`` wide enough to cover the match radius, so the
   database only returns drivers from nearby cells.
3. **Exact Ranking** -- survivors are ranked by Haversine distance; the
   closest one within the radius wins.

Ties are broken by input order (the sort is stable), which in practice
is database row order.  That is non-deterministic and acceptable.

Complexity
----------
Let D = online drivers in the candidate cells.

* Cell expansion: O(k^2) cells for ring size k
* Ranking:        O(D log D)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import h3

from .distance import haversine_km


@dataclass(frozen=True)
class PositionedDriver:
    driver_id: int
    user_id: int
    lat: float
    lng: float


def driver_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_cells(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> set[str]:
    """
    Cells that may contain a point within *radius_km* of (lat, lng).

    A k-ring's inner radius is roughly ``1.5 x edge x k``; the target
    point can sit up to one edge away from its cell centre, and so can
    the origin, so both are added before sizing the ring.  One extra
    ring absorbs cell-size distortion across the globe.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil((radius_km + 2 * edge_km) / (1.5 * edge_km)) + 1
    origin = driver_h3_cell(lat, lng, resolution)
    return set(h3.grid_disk(origin, k))


def rank_by_distance(
    drivers: Iterable[PositionedDriver], lat: float, lng: float
) -> list[tuple[float, PositionedDriver]]:
    ranked = [(haversine_km(lat, lng, d.lat, d.lng), d) for d in drivers]
    ranked.sort(key=lambda pair: pair[0])
    return ranked


def nearest_within(
    drivers: Iterable[PositionedDriver],
    lat: float,
    lng: float,
    max_radius_km: Optional[float],
) -> Optional[tuple[float, PositionedDriver]]:
    ranked = rank_by_distance(drivers, lat, lng)
    if not ranked:
        return None
    distance, driver = ranked[0]
    if max_radius_km is not None and distance > max_radius_km:
        return None
    return distance, driver
