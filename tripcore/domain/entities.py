"""
Domain value objects and lifecycle rules.

Patterns used
-------------
- **State Pattern** for bookings: ``ensure_transition`` enforces the legal
  lifecycle (pending -> accepted -> arrived -> in_progress -> completed,
  with cancelled / rejected as early exits) before any write is attempted.
- ``offer_status_for`` derives an offer's boarding status from its seat
  occupancy so the two can never disagree.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import (
    BOOKING_TRANSITIONS,
    TERMINAL_STATUSES,
    BookingStatus,
    OfferStatus,
    UserRole,
)
from .errors import InvalidStateError, ValidationError

OTP_DIGITS = 4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Identity:
    """Caller as vouched for by the identity provider."""

    user_id: int
    role: UserRole

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValidationError(f"Longitude out of range: {self.longitude}")

    @property
    def as_tuple(self) -> tuple[float, float]:
        return self.latitude, self.longitude


@dataclass(frozen=True)
class Stop:
    """A geocoded address the passenger picked."""

    location: Location
    address: str = ""


@dataclass(frozen=True)
class VehicleDescriptor:
    car_model: str
    car_number: str
    capacity: int = 4

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValidationError("Vehicle capacity must be at least 1")


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    heading: float = 0.0


@dataclass(frozen=True)
class DriverLocationSample:
    booking_id: int
    lat: float
    lng: float
    heading: float
    updated_at: datetime


@dataclass(frozen=True)
class RouteResult:
    """Typed answer of the routing provider."""

    geometry: list[tuple[float, float]]
    distance_m: float
    duration_s: float


@dataclass(frozen=True)
class PlaceCandidate:
    label: str
    location: Location
    importance: float = 0.0


@dataclass
class PoolCandidate:
    booking: Any
    offer: Any
    driver: Optional[Any]
    pickup_distance_km: float
    dropoff_distance_km: float
    available_seats: int


@dataclass
class JoinDecision:
    booking: Any
    fare: Optional[int] = None
    accepted: bool = False


@dataclass
class BookingDetail:
    booking: Any
    offer: Optional[Any] = None
    driver: Optional[Any] = None


@dataclass
class DriverStats:
    earnings: int
    total_trips: int


@dataclass
class ActivePool:
    offer: Any
    riders: list = field(default_factory=list)


# ── Lifecycle rules ───────────────────────────────────────────────────


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise ``InvalidStateError`` unless *current* -> *target* is legal."""
    current, target = BookingStatus(current), BookingStatus(target)
    if current in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Booking is already {current.value} and can no longer change"
        )
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Cannot transition from {current.value} to {target.value}"
        )


def generate_otp() -> str:
    """Fresh 4-digit shared secret (never starts with 0)."""
    low = 10 ** (OTP_DIGITS - 1)
    return str(low + secrets.randbelow(9 * low))


def offer_status_for(occupied: int, capacity: int) -> OfferStatus:
    if occupied <= 0:
        return OfferStatus.EMPTY
    if occupied >= capacity:
        return OfferStatus.FULL
    return OfferStatus.BOARDING
