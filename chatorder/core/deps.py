"""Dependency injection for FastAPI routes."""

from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

# Re-export auth dependencies for convenience
from chatorder.core.auth import CurrentUser, get_current_user
from chatorder.core.config import settings
from chatorder.core.database import get_async_session
from chatorder.core.locks import LockService
from chatorder.services.notification_service import NotificationService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_async_session():
        yield session


# Shared Redis connection pool
_redis_pool: aioredis.ConnectionPool | None = None


def _get_redis_pool() -> aioredis.ConnectionPool:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url), decode_responses=True
        )
    return _redis_pool


async def close_redis_pool() -> None:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """Yield a Redis client from the shared connection pool."""
    r = aioredis.Redis(connection_pool=_get_redis_pool())
    try:
        yield r
    finally:
        await r.aclose()


DBSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[aioredis.Redis, Depends(get_redis)]


def get_lock_service(redis: RedisClient) -> LockService:
    return LockService(redis)


def get_notifier(redis: RedisClient) -> NotificationService:
    return NotificationService(redis)


Locks = Annotated[LockService, Depends(get_lock_service)]
Notifier = Annotated[NotificationService, Depends(get_notifier)]


__all__ = [
    "CurrentUser",
    "DBSession",
    "Locks",
    "Notifier",
    "RedisClient",
    "close_redis_pool",
    "get_current_user",
    "get_db",
    "get_lock_service",
    "get_notifier",
    "get_redis",
]
