"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dental_scheduler.core.domain import Actor, ActorRole
from dental_scheduler.core.redis_client import CacheManager, get_redis_client
from dental_scheduler.core.security import decode_access_token
from dental_scheduler.database import get_db
from dental_scheduler.repositories.scheduling_repository import (
    PostgresSchedulingRepository,
    SchedulingRepository,
)
from dental_scheduler.services.availability_service import AvailabilityService
from dental_scheduler.services.scheduling_service import SchedulingService

# Security
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Extract the acting user and role from the JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor with user ID and role

    Raises:
        HTTPException: If token is invalid, expired or lacks a known role
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    role_str = payload.get("role")
    if not isinstance(user_id_str, str) or not isinstance(role_str, str):
        raise _credentials_error()

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise _credentials_error("Invalid user ID format")

    try:
        role = ActorRole(role_str)
    except ValueError:
        raise _credentials_error("Unknown role")

    return Actor(user_id=user_id, role=role)


async def get_scheduling_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SchedulingRepository:
    """Get the PostgreSQL repository with the Redis availability cache."""
    return PostgresSchedulingRepository(db, CacheManager(get_redis_client()))


async def get_scheduling_service(
    repository: Annotated[SchedulingRepository, Depends(get_scheduling_repository)],
) -> SchedulingService:
    """Get the scheduling orchestrator."""
    return SchedulingService(repository)


async def get_availability_service(
    repository: Annotated[SchedulingRepository, Depends(get_scheduling_repository)],
) -> AvailabilityService:
    """Get the availability service."""
    return AvailabilityService(repository)


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Scheduling = Annotated[SchedulingService, Depends(get_scheduling_service)]
Availability = Annotated[AvailabilityService, Depends(get_availability_service)]
