"""Geometry helpers: great-circle distance and point-in-polygon."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from math import atan2, cos, radians, sin, sqrt

from pygeotrack._constants import EARTH_RADIUS_M

Position = tuple[float, float]
"""A ``(lng, lat)`` pair, GeoJSON axis order."""

Ring = Sequence[Position]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in metres."""
    la1, lo1, la2, lo2 = map(radians, (lat1, lon1, lat2, lon2))
    dlat = la2 - la1
    dlon = lo2 - lo1
    a = sin(dlat / 2) ** 2 + cos(la1) * cos(la2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(a), sqrt(1 - a))


def point_in_ring(ring: Ring, lng: float, lat: float) -> bool:
    """Ray-casting containment test against a single closed ring.

    Points exactly on an edge may fall either way; callers that care about
    boundary jitter handle it with dwell time rather than geometry.
    """
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > lat) != (yj > lat):
            # yj != yi is guaranteed by the condition above.
            cross_x = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < cross_x:
                inside = not inside
        j = i
    return inside


def point_in_any(rings: Iterable[Ring], lng: float, lat: float) -> bool:
    """Return ``True`` when the point is inside at least one ring."""
    return any(point_in_ring(ring, lng, lat) for ring in rings)
