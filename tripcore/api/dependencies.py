"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, Request

from tripcore.domain.entities import Identity
from tripcore.domain.enums import UserRole
from tripcore.domain.errors import PermissionDeniedError
from tripcore.services.container import Services


def get_services(request: Request) -> Services:
    """The service graph built by the application lifespan."""
    return request.app.state.services


async def get_optional_identity(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[UserRole] = Header(None),
) -> Optional[Identity]:
    """Caller identity as forwarded by the authenticating gateway, if any."""
    if x_user_id is None:
        return None
    return Identity(user_id=x_user_id, role=x_user_role or UserRole.PASSENGER)


async def get_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    if identity is None:
        raise PermissionDeniedError("Missing caller identity")
    return identity


async def get_driver(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_driver:
        raise PermissionDeniedError("Only drivers can use this endpoint")
    return identity
