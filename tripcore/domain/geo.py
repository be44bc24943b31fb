"""
Geospatial utilities.

Assumption
----------
We use great-circle (Haversine) distance instead of road distance.  Pool
thresholds are a few kilometres, so the error is well below the tolerance
of the matching policy.  Point-to-polyline distance projects the route onto
a local equirectangular plane centred on the query point, which is accurate
to a few metres at city scale.

Complexity: O(1) per point distance, O(n) per polyline of n vertices.
"""

from __future__ import annotations

import math
from typing import Sequence

import h3

EARTH_RADIUS_KM = 6_371.0

LatLng = tuple[float, float]


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _project(origin: LatLng, point: LatLng) -> tuple[float, float]:
    """Planar (x, y) in km of *point* relative to *origin*."""
    cos_lat = math.cos(math.radians(origin[0]))
    x = math.radians(point[1] - origin[1]) * EARTH_RADIUS_KM * cos_lat
    y = math.radians(point[0] - origin[0]) * EARTH_RADIUS_KM
    return x, y


def point_to_segment_km(point: LatLng, start: LatLng, end: LatLng) -> float:
    """Shortest distance in km from *point* to the segment start-end."""
    ax, ay = _project(point, start)
    bx, by = _project(point, end)
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0.0:
        return haversine_km(point[0], point[1], start[0], start[1])

    # Parameter of the foot of the perpendicular from the origin (the point)
    t = max(0.0, min(1.0, -(ax * dx + ay * dy) / length_sq))
    return math.hypot(ax + t * dx, ay + t * dy)


def point_to_polyline_km(point: LatLng, polyline: Sequence[LatLng]) -> float:
    """
    Minimum distance from *point* to any segment of *polyline*.

    A single-vertex polyline degenerates to point distance; an empty one is
    infinitely far away.
    """
    if not polyline:
        return math.inf
    if len(polyline) == 1:
        only = polyline[0]
        return haversine_km(point[0], point[1], only[0], only[1])
    return min(
        point_to_segment_km(point, polyline[i], polyline[i + 1])
        for i in range(len(polyline) - 1)
    )


def bounding_box(
    lat: float, lng: float, radius_km: float
) -> tuple[float, float, float, float]:
    """
    Smallest lat/lng box containing every point within *radius_km*.

    Returns ``(min_lat, max_lat, min_lng, max_lng)``.  Used as a cheap SQL
    pre-filter; the exact haversine test is applied afterwards.
    """
    angular = radius_km / EARTH_RADIUS_KM
    dlat = math.degrees(angular)
    min_lat, max_lat = lat - dlat, lat + dlat

    if min_lat <= -90.0 or max_lat >= 90.0:
        # the circle covers a pole: every longitude qualifies
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0

    ratio = math.sin(angular) / math.cos(math.radians(lat))
    if ratio >= 1.0:
        return min_lat, max_lat, -180.0, 180.0
    dlng = math.degrees(math.asin(ratio))
    if lng - dlng < -180.0 or lng + dlng > 180.0:
        # crosses the antimeridian
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lng - dlng, lng + dlng


def destination_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a destination to its H3 hexagon, used as a cluster label.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)
