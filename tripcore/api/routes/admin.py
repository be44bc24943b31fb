"""
Admin / observability endpoints
===============================

GET /api/v1/admin/active-pools -- pool vehicles with riders aboard
GET /api/v1/admin/health       -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from tripcore.api.dependencies import get_services
from tripcore.api.middleware import limiter
from tripcore.api.schemas import ActivePoolResponse, HealthResponse
from tripcore.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/active-pools",
    response_model=list[ActivePoolResponse],
    summary="List pool vehicles with their seated riders",
)
@limiter.limit("100/minute")
async def get_active_pools(
    request: Request,
    services: Services = Depends(get_services),
):
    pools = await services.offers.active_pools()
    return [ActivePoolResponse.model_validate(p) for p in pools]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
