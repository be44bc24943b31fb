"""
Passenger endpoints
===================

GET /api/v1/user/history         -- completed / cancelled bookings, newest first
GET /api/v1/user/active-booking  -- the caller's booking still in flight, if any
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from tripcore.api.dependencies import get_identity, get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import BookingResponse, PassengerBookingResponse
from tripcore.domain.entities import Identity
from tripcore.services.container import Services

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/history", response_model=list[BookingResponse], summary="Trip history")
@limiter.limit(RATE_LIMIT)
async def history(
    request: Request,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.earnings.user_history(identity.user_id)


@router.get(
    "/active-booking",
    response_model=Optional[PassengerBookingResponse],
    summary="Booking in flight",
    description=(
        "For drivers: the most recent booking holding a seat on their vehicle, "
        "without the passenger's OTP."
    ),
)
@limiter.limit(RATE_LIMIT)
async def active_booking(
    request: Request,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    if identity.is_driver:
        booking = await services.bookings.active_for_driver(identity.user_id)
        return None if booking is None else BookingResponse.model_validate(booking)
    return await services.bookings.active_for_passenger(identity.user_id)
