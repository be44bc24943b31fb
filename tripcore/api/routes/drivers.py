"""
Driver endpoints
================

POST /api/v1/driver/location               -- report position for an active booking
GET  /api/v1/driver/location/{booking_id}  -- latest position (passenger polls this)
GET  /api/v1/driver/earnings               -- sum of completed fares
GET  /api/v1/driver/stats                  -- earnings and completed trip count
GET  /api/v1/driver/history                -- completed / cancelled bookings
"""

from fastapi import APIRouter, Depends, Request

from tripcore.api.dependencies import get_driver, get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import (
    BookingResponse,
    DriverLocationResponse,
    DriverStatsResponse,
    EarningsResponse,
    ErrorResponse,
    LocationReport,
)
from tripcore.domain.entities import Identity
from tripcore.services.container import Services

router = APIRouter(prefix="/driver", tags=["driver"])


@router.post(
    "/location",
    response_model=DriverLocationResponse,
    summary="Report the driver's position",
)
@limiter.limit(RATE_LIMIT)
async def report_location(
    request: Request,
    body: LocationReport,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    sample = await services.tracker.report(
        body.booking_id, body.lat, body.lng, body.heading
    )
    return DriverLocationResponse.model_validate(sample)


@router.get(
    "/location/{booking_id}",
    response_model=DriverLocationResponse,
    summary="Latest driver position for a booking",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def read_location(
    request: Request,
    booking_id: int,
    services: Services = Depends(get_services),
):
    sample = await services.tracker.read(booking_id)
    return DriverLocationResponse.model_validate(sample)


@router.get("/earnings", response_model=EarningsResponse, summary="Total earnings")
@limiter.limit(RATE_LIMIT)
async def earnings(
    request: Request,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    return EarningsResponse(
        earnings=await services.earnings.driver_earnings(driver.user_id)
    )


@router.get("/stats", response_model=DriverStatsResponse, summary="Earnings and trips")
@limiter.limit(RATE_LIMIT)
async def stats(
    request: Request,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    return DriverStatsResponse.model_validate(
        await services.earnings.driver_stats(driver.user_id)
    )


@router.get(
    "/history",
    response_model=list[BookingResponse],
    summary="Completed and cancelled trips, newest first",
)
@limiter.limit(RATE_LIMIT)
async def history(
    request: Request,
    driver: Identity = Depends(get_driver),
    services: Services = Depends(get_services),
):
    return await services.earnings.driver_history(driver.user_id)
