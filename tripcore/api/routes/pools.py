"""
Pool endpoints
==============

POST  /api/v1/pools/available              -- pools a passenger could join
POST  /api/v1/pools/join-request           -- ask to join a pool
PATCH /api/v1/pools/respond/{booking_id}   -- driver accepts / rejects a join request
GET   /api/v1/pools/{anchor_id}/passengers -- accepted co-riders of a pool
GET   /api/v1/pools/requests/{offer_id}    -- join requests awaiting the driver
"""

from fastapi import APIRouter, Depends, Request

from tripcore.api.dependencies import get_driver, get_identity, get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import (
    BookingResponse,
    ErrorResponse,
    JoinDecisionResponse,
    JoinRequestCreate,
    JoinResponseRequest,
    PassengerBookingResponse,
    PoolCandidateResponse,
    TripQuery,
)
from tripcore.domain.entities import Identity
from tripcore.services.container import Services

router = APIRouter(prefix="/pools", tags=["pools"])


@router.post(
    "/available",
    response_model=list[PoolCandidateResponse],
    summary="Find pools near both ends of a trip",
)
@limiter.limit(RATE_LIMIT)
async def available_pools(
    request: Request,
    body: TripQuery,
    services: Services = Depends(get_services),
):
    candidates = await services.pools.find_available_pools(
        body.pickup.to_location(), body.dropoff.to_location()
    )
    return [PoolCandidateResponse.model_validate(c) for c in candidates]


@router.post(
    "/join-request",
    status_code=201,
    response_model=PassengerBookingResponse,
    summary="Ask to join a pool",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def join_request(
    request: Request,
    body: JoinRequestCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.pools.request_join(
        body.anchor_booking_id,
        identity.user_id,
        body.pickup.to_stop(),
        body.dropoff.to_stop(),
        body.distance_km,
    )


@router.patch(
    "/respond/{booking_id}",
    response_model=JoinDecisionResponse,
    summary="Accept or reject a join request",
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
@limiter.limit(RATE_LIMIT)
async def respond(
    request: Request,
    booking_id: int,
    body: JoinResponseRequest,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    decision = await services.pools.respond_to_join(
        booking_id, body.action, body.price_per_km, driver.user_id
    )
    return JoinDecisionResponse.model_validate(decision)


@router.get(
    "/requests/{offer_id}",
    response_model=list[BookingResponse],
    summary="Pending join requests for an offer",
)
@limiter.limit(RATE_LIMIT)
async def pending_requests(
    request: Request,
    offer_id: int,
    services: Services = Depends(get_services),
):
    return await services.pools.list_pending_pool_requests(offer_id)


@router.get(
    "/{anchor_id}/passengers",
    response_model=list[BookingResponse],
    summary="Accepted co-riders of a pool",
)
@limiter.limit(RATE_LIMIT)
async def passengers(
    request: Request,
    anchor_id: int,
    services: Services = Depends(get_services),
):
    return await services.pools.list_pool_passengers(anchor_id)
