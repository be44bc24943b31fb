"""
Pool Matching Rules
===================

Two independent ways for a passenger to share a car:

1. **Anchor matching** -- an accepted pool booking (the *anchor*) is
   joinable when the newcomer's pickup and drop-off both lie strictly
   within a radius (default 4 km) of the anchor's, and the anchor's
   vehicle still has a free seat.
2. **Route matching** -- a pool offer with a known route is a match when

   * the newcomer's drop-off is within ``destination_radius_km`` (3 km) of
     the offer's final destination (destination cluster test), and
   * the newcomer's pickup is within ``corridor_km`` (0.5 km) of the route
     polyline (along-the-path test).

Both thresholds trade match yield against match quality, so they live in
``MatchPolicy`` and are loaded from settings.

Complexity
----------
* Anchor test: O(1) per anchor.
* Route test:  O(v) per offer, v = route vertices.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .geo import LatLng, haversine_km, point_to_polyline_km


@dataclass(frozen=True)
class MatchPolicy:
    pickup_radius_km: float = 4.0
    dropoff_radius_km: float = 4.0
    destination_radius_km: float = 3.0
    corridor_km: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "MatchPolicy":
        return cls(
            pickup_radius_km=settings.pool_pickup_radius_km,
            dropoff_radius_km=settings.pool_dropoff_radius_km,
            destination_radius_km=settings.route_destination_radius_km,
            corridor_km=settings.route_corridor_km,
        )


def anchor_distances(
    pickup: LatLng,
    dropoff: LatLng,
    anchor_pickup: LatLng,
    anchor_dropoff: LatLng,
) -> tuple[float, float]:
    """Return ``(pickup_km, dropoff_km)`` between a request and an anchor."""
    return (
        haversine_km(pickup[0], pickup[1], anchor_pickup[0], anchor_pickup[1]),
        haversine_km(dropoff[0], dropoff[1], anchor_dropoff[0], anchor_dropoff[1]),
    )


def anchor_match(
    pickup_km: float,
    dropoff_km: float,
    occupied: int,
    capacity: int,
    policy: MatchPolicy,
) -> bool:
    return (
        pickup_km < policy.pickup_radius_km
        and dropoff_km < policy.dropoff_radius_km
        and occupied < capacity
    )


def route_match(
    pickup: LatLng,
    dropoff: LatLng,
    destination: LatLng,
    route: Sequence[LatLng],
    policy: MatchPolicy,
) -> bool:
    # Destination cluster first: it is O(1) and rejects most offers
    to_destination = haversine_km(
        dropoff[0], dropoff[1], destination[0], destination[1]
    )
    if to_destination > policy.destination_radius_km:
        return False
    return point_to_polyline_km(pickup, route) <= policy.corridor_km
