"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tripcore.domain.entities import Location, Position, Stop, VehicleDescriptor
from tripcore.domain.enums import (
    BookingStatus,
    FareType,
    JoinAction,
    JoinStatus,
    OfferStatus,
    UserRole,
)


# ── Shared ────────────────────────────────────────────────────────────


class Coordinate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_location(self) -> Location:
        return Location(self.lat, self.lng)


class StopIn(Coordinate):
    address: str = Field("", max_length=500)

    def to_stop(self) -> Stop:
        return Stop(self.to_location(), self.address)


# ── Requests ──────────────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    offer_id: int
    pickup: StopIn
    dropoff: StopIn
    fare_estimate: Optional[int] = Field(None, ge=0)
    is_pool: bool = False
    distance_km: Optional[float] = Field(
        None,
        ge=0,
        description="Routed trip distance; straight-line distance when omitted.",
    )


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    otp: Optional[str] = Field(None, max_length=8)


class TripQuery(BaseModel):
    pickup: Coordinate
    dropoff: Coordinate


class JoinRequestCreate(BaseModel):
    anchor_booking_id: int
    pickup: StopIn
    dropoff: StopIn
    distance_km: Optional[float] = Field(None, ge=0)


class JoinResponseRequest(BaseModel):
    action: JoinAction
    price_per_km: Optional[int] = Field(
        None, ge=0, description="Defaults to the offer's own price per km."
    )


class GoOnlineRequest(BaseModel):
    car_model: str = Field(..., min_length=1, max_length=120)
    car_number: str = Field(..., min_length=1, max_length=32)
    capacity: int = Field(4, ge=1, le=8)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: float = Field(0.0, ge=0, lt=360)
    fare_type: FareType = FareType.POOL
    price_per_km: Optional[int] = Field(None, ge=0)

    def to_vehicle(self) -> VehicleDescriptor:
        return VehicleDescriptor(self.car_model, self.car_number, self.capacity)

    def to_position(self) -> Position:
        return Position(self.lat, self.lng, self.heading)


class LocationReport(BaseModel):
    booking_id: int
    lat: float
    lng: float
    heading: Optional[float] = None


# ── Responses ─────────────────────────────────────────────────────────


class UserResponse(BaseModel):
    id: int
    name: Optional[str] = None
    mobile: str
    role: UserRole
    avatar: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    passenger_id: int
    offer_id: Optional[int] = None
    pickup_address: str
    dropoff_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    status: BookingStatus
    fare: Optional[int] = None
    distance_km: Optional[float] = None
    is_pool: bool
    pool_owner_id: Optional[int] = None
    join_status: Optional[JoinStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PassengerBookingResponse(BookingResponse):
    """A booking as its own passenger sees it, start-of-trip OTP included."""

    otp: Optional[str] = None


class OfferResponse(BaseModel):
    id: int
    driver_id: Optional[int] = None
    car_model: str
    car_number: str
    latitude: float
    longitude: float
    heading: Optional[float] = None
    is_available: bool
    fare_type: FareType
    price_per_km: int
    capacity: int
    occupied: int
    available_seats: int
    status: OfferStatus
    destination_lat: Optional[float] = None
    destination_lng: Optional[float] = None
    destination_address: Optional[str] = None
    destination_cell: Optional[str] = None
    route_geometry: Optional[list[list[float]]] = None

    model_config = {"from_attributes": True}


class BookingDetailResponse(BaseModel):
    booking: PassengerBookingResponse
    offer: Optional[OfferResponse] = None
    driver: Optional[UserResponse] = None

    model_config = {"from_attributes": True}


class PoolCandidateResponse(BaseModel):
    booking: BookingResponse
    offer: OfferResponse
    driver: Optional[UserResponse] = None
    pickup_distance_km: float
    dropoff_distance_km: float
    available_seats: int

    model_config = {"from_attributes": True}


class JoinDecisionResponse(BaseModel):
    booking: BookingResponse
    fare: Optional[int] = None
    accepted: bool

    model_config = {"from_attributes": True}


class DriverLocationResponse(BaseModel):
    booking_id: int
    lat: float
    lng: float
    heading: float
    updated_at: datetime

    model_config = {"from_attributes": True}


class EarningsResponse(BaseModel):
    earnings: int


class DriverStatsResponse(BaseModel):
    earnings: int
    total_trips: int

    model_config = {"from_attributes": True}


class ActivePoolResponse(BaseModel):
    offer: OfferResponse
    riders: list[BookingResponse] = []

    model_config = {"from_attributes": True}


class PlaceResponse(BaseModel):
    label: str
    lat: float
    lng: float
    importance: float


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
