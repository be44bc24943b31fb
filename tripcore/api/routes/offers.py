"""
Vehicle offer endpoints
=======================

POST /api/v1/offers                -- go online (new offer for this shift)
POST /api/v1/offers/{id}/offline   -- go offline
GET  /api/v1/offers                -- list offers
GET  /api/v1/offers/{id}           -- one offer
POST /api/v1/offers/match          -- pool offers whose route passes the trip
"""

from fastapi import APIRouter, Depends, Query, Request

from tripcore.api.dependencies import get_driver, get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import (
    ErrorResponse,
    GoOnlineRequest,
    OfferResponse,
    TripQuery,
)
from tripcore.domain.entities import Identity
from tripcore.services.container import Services

router = APIRouter(prefix="/offers", tags=["offers"])


@router.post(
    "",
    status_code=201,
    response_model=OfferResponse,
    summary="Go online",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def go_online(
    request: Request,
    body: GoOnlineRequest,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    return await services.offers.go_online(
        driver.user_id,
        body.to_vehicle(),
        body.to_position(),
        fare_type=body.fare_type,
        price_per_km=body.price_per_km,
    )


@router.post(
    "/match",
    response_model=list[OfferResponse],
    summary="Pool offers heading the same way",
)
@limiter.limit(RATE_LIMIT)
async def match_offers(
    request: Request,
    body: TripQuery,
    services: Services = Depends(get_services),
):
    return await services.pools.find_route_matches(
        body.pickup.to_location(), body.dropoff.to_location()
    )


@router.post(
    "/{offer_id}/offline",
    response_model=OfferResponse,
    summary="Go offline",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def go_offline(
    request: Request,
    offer_id: int,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    return await services.offers.go_offline(offer_id, driver.user_id)


@router.get("", response_model=list[OfferResponse], summary="List offers")
@limiter.limit(RATE_LIMIT)
async def list_offers(
    request: Request,
    available_only: bool = Query(False),
    services: Services = Depends(get_services),
):
    return await services.offers.list_offers(available_only)


@router.get(
    "/{offer_id}",
    response_model=OfferResponse,
    summary="Get an offer",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def get_offer(
    request: Request,
    offer_id: int,
    services: Services = Depends(get_services),
):
    return await services.offers.get_offer(offer_id)
