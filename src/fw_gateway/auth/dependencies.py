"""FastAPI dependencies: get_current_actor and role guards.

Usage in any protected router:
    from src.fw_gateway.auth.dependencies import get_current_actor

    @router.get("/protected")
    async def protected(actor: Actor = Depends(get_current_actor)):
        ...
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.fw_common.actor import Actor
from src.fw_common.enums import Role
from src.fw_common.errors import AuthenticationError, ForbiddenError
from src.fw_gateway.auth.jwt_handler import actor_from_token

_bearer = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Actor:
    """Extract the Bearer token and return the calling Actor.

    Raises HTTP 401 (AuthenticationError) if the token is missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return actor_from_token(credentials.credentials)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role is not Role.ADMIN:
        raise ForbiddenError("Admin role required")
    return actor


async def require_fundi(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role is not Role.FUNDI:
        raise ForbiddenError("Fundi role required")
    return actor


async def require_customer(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role is not Role.CUSTOMER:
        raise ForbiddenError("Customer role required")
    return actor
