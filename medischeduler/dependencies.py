"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from medischeduler.core.exceptions import UnauthorizedException
from medischeduler.core.permissions import ActorContext, Role
from medischeduler.core.redis_client import CacheManager, get_redis_client, redis_enabled
from medischeduler.core.security import decode_access_token
from medischeduler.database import get_db

# Security
security = HTTPBearer(auto_error=False)


async def get_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> ActorContext:
    """
    Resolve the calling actor from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor context with the capabilities of the token's role

    Raises:
        UnauthorizedException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise UnauthorizedException("Could not validate credentials")

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise UnauthorizedException("Could not validate credentials")

    try:
        actor_id = UUID(user_id_str)
    except ValueError:
        raise UnauthorizedException("Invalid user ID format")

    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise UnauthorizedException("Unknown role in token")

    return ActorContext.for_role(actor_id, role)


def get_cache_manager() -> CacheManager | None:
    """Cache manager when Redis is configured, otherwise None."""
    if not redis_enabled():
        return None
    return CacheManager(get_redis_client())


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Actor = Annotated[ActorContext, Depends(get_actor)]
Cache = Annotated[CacheManager | None, Depends(get_cache_manager)]
