"""
FastAPI application factory.

* Registers routes for bookings, offers, pools, drivers, users, places and
  admin.
* Builds the service graph and starts / stops the background maintenance
  worker via lifespan events.
* Maps domain errors to JSON ``{"detail", "code"}`` responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from tripcore.api.middleware import limiter
from tripcore.api.routes import admin, bookings, drivers, offers, places, pools, users
from tripcore.config import settings
from tripcore.domain.errors import (
    CapacityExceededError,
    InvalidStateError,
    NotFoundError,
    OtpMismatchError,
    PermissionDeniedError,
    TripCoreError,
    ValidationError,
)
from tripcore.infrastructure.database import async_session_factory
from tripcore.services.container import Services, build_services, open_location_store
from tripcore.workers import maintenance as _maintenance

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

STATUS_FOR_ERROR: dict[type[TripCoreError], int] = {
    ValidationError: 400,
    OtpMismatchError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    InvalidStateError: 409,
    CapacityExceededError: 409,
}


async def _domain_error_handler(request: Request, exc: TripCoreError) -> JSONResponse:
    status = next(
        (code for cls, code in STATUS_FOR_ERROR.items() if isinstance(exc, cls)), 400
    )
    return JSONResponse(
        status_code=status, content={"detail": exc.message, "code": exc.code}
    )


def create_app(
    services: Optional[Services] = None, run_worker: bool = True
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build services on startup, run the worker; stop both on shutdown."""
        owned = services is None
        if owned:
            app.state.services = build_services(
                async_session_factory,
                settings=settings,
                location_store=await open_location_store(settings),
            )
        if run_worker:
            await _maintenance.start_maintenance_loop(app.state.services)
        yield
        if run_worker:
            await _maintenance.stop_maintenance_loop()
        if owned:
            await app.state.services.aclose()

    app = FastAPI(
        title="Trip Core API",
        description=(
            "Turns ride requests into matched, tracked and completed trips, "
            "including shared pool rides with OTP-gated pickup, seat-safe "
            "matching and request expiry."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(TripCoreError, _domain_error_handler)

    # Routers
    for module in (bookings, drivers, users, offers, pools, places, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
