"""
Booking endpoints
=================

POST  /api/v1/bookings                 -- create a booking against an offer
GET   /api/v1/bookings?status=         -- list bookings in a status (drivers poll this)
GET   /api/v1/bookings/{id}            -- booking with its vehicle and driver
GET   /api/v1/bookings/{id}/watch      -- long-poll until the status changes
PATCH /api/v1/bookings/{id}/status     -- drive the booking state machine
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from tripcore.api.dependencies import get_identity, get_optional_identity, get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import (
    BookingCreateRequest,
    BookingDetailResponse,
    BookingResponse,
    BookingStatusUpdate,
    ErrorResponse,
    PassengerBookingResponse,
)
from tripcore.domain.entities import Identity
from tripcore.domain.enums import BookingStatus
from tripcore.services.container import Services
from tripcore.services.feed import booking_key

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=PassengerBookingResponse,
    summary="Create a booking",
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.bookings.create(
        passenger_id=identity.user_id,
        offer_id=body.offer_id,
        pickup=body.pickup.to_stop(),
        dropoff=body.dropoff.to_stop(),
        fare_estimate=body.fare_estimate,
        is_pool=body.is_pool,
        distance_km=body.distance_km,
    )


@router.get(
    "",
    response_model=list[BookingResponse],
    summary="List bookings by status",
    description=(
        "Pending requests older than the expiry window (60 s) are left out. "
        "Pool join requests are answered through /pools/respond instead."
    ),
)
@limiter.limit(RATE_LIMIT)
async def list_bookings(
    request: Request,
    status: BookingStatus = Query(BookingStatus.PENDING),
    offer_id: Optional[int] = Query(None),
    services: Services = Depends(get_services),
):
    return await services.bookings.list_by_status(status, offer_id=offer_id)


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    summary="Get a booking with its vehicle and driver",
    description="The OTP is only shown to the booking's own passenger.",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def get_booking(
    request: Request,
    booking_id: int,
    identity: Optional[Identity] = Depends(get_optional_identity),
    services: Services = Depends(get_services),
):
    detail = await services.bookings.get_detail(booking_id)
    response = BookingDetailResponse.model_validate(detail)
    if identity is None or identity.user_id != detail.booking.passenger_id:
        response.booking.otp = None
    return response


@router.get(
    "/{booking_id}/watch",
    response_model=BookingResponse,
    summary="Wait for a booking to leave a status",
    description=(
        "Returns immediately when the booking's status differs from "
        "``status``; otherwise waits for the next change or the long-poll "
        "timeout and returns the booking as it then is."
    ),
)
@limiter.limit(RATE_LIMIT)
async def watch_booking(
    request: Request,
    booking_id: int,
    status: Optional[BookingStatus] = Query(None),
    timeout: Optional[float] = Query(None, gt=0, le=60),
    services: Services = Depends(get_services),
):
    wait_for = timeout or services.settings.long_poll_timeout_seconds
    # Subscribe before reading so a change in between is not missed
    async with services.feed.subscribe(booking_key(booking_id)) as subscription:
        booking = await services.bookings.get(booking_id)
        if status is None or booking.status != status:
            return booking
        if not await subscription.wait(wait_for):
            return booking
    return await services.bookings.get(booking_id)


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Move a booking to its next status",
    description=(
        "accepted / rejected / arrived / in_progress / completed are driver "
        "actions; in_progress requires the passenger's OTP. A passenger may "
        "cancel while the booking is still pending."
    ),
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
@limiter.limit(RATE_LIMIT)
async def update_booking_status(
    request: Request,
    booking_id: int,
    body: BookingStatusUpdate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.bookings.update_status(
        booking_id, body.status, otp=body.otp, actor=identity
    )
