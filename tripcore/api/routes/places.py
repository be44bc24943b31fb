"""
Place search
============

GET /api/v1/places?q= -- geocode free text into ranked candidates
"""

from fastapi import APIRouter, Depends, Query, Request

from tripcore.api.dependencies import get_services
from tripcore.api.middleware import RATE_LIMIT, limiter
from tripcore.api.schemas import PlaceResponse
from tripcore.services.container import Services

router = APIRouter(prefix="/places", tags=["places"])


@router.get("", response_model=list[PlaceResponse], summary="Search places")
@limiter.limit(RATE_LIMIT)
async def search_places(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(5, ge=1, le=20),
    services: Services = Depends(get_services),
):
    candidates = await services.routing.geocode(q, limit)
    return [
        PlaceResponse(
            label=c.label,
            lat=c.location.latitude,
            lng=c.location.longitude,
            importance=c.importance,
        )
        for c in candidates
    ]
