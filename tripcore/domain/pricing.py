"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Fare = round_half_up(Price_Per_KM x Distance_KM)

* Fares are whole currency units.  Halves round up (``2.5 -> 3``), unlike
  Python's banker's rounding, so that drivers are never short-changed.
* The per-km price is fixed by the driver's offer at go-online time; a pool
  driver may quote a different price when accepting a join request.

Complexity: O(1) per fare.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

from .errors import ValidationError
from .geo import haversine_km


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, price_per_km: float) -> int: ...


class PerKmFare(FareStrategy):
    def calculate(self, distance_km: float, price_per_km: float) -> int:
        if distance_km < 0 or price_per_km < 0:
            raise ValidationError("Distance and price must not be negative")
        return round_half_up(price_per_km * distance_km)


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by the booking and pool services."""

    def __init__(self, strategy: FareStrategy | None = None):
        self.strategy = strategy or PerKmFare()

    def fare(self, distance_km: float, price_per_km: float) -> int:
        return self.strategy.calculate(distance_km, price_per_km)

    def estimate(
        self,
        pickup_lat: float,
        pickup_lng: float,
        dropoff_lat: float,
        dropoff_lng: float,
        price_per_km: float,
    ) -> int:
        distance = haversine_km(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)
        return self.fare(distance, price_per_km)
