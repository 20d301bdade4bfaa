"""
BeatMarket Database Connection Manager
Async PostgreSQL sessions and the optional Redis credential cache connection
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from ..core.config import get_settings
from ..core.logging import infra_logger

settings = get_settings()

# SQLAlchemy base for models
Base = declarative_base()


class DatabaseManager:
    """
    Owns the engine, the session factory and the Redis client.

    Redis is optional: without REDIS_URL the credential cache is disabled
    and completed generations simply wait for an explicit post-processing
    request.
    """

    def __init__(self):
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._redis: Optional[redis.Redis] = None

    @property
    def redis_enabled(self) -> bool:
        return self._redis is not None

    async def initialize(self) -> None:
        self._engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=settings.is_development,
            pool_pre_ping=True,
        )

        # Conditional updates bypass the identity map, so objects are refreshed explicitly
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if settings.REDIS_URL:
            self._redis = redis.Redis.from_url(
                settings.REDIS_URL,
                max_connections=20,
                retry_on_timeout=True
            )

        infra_logger.log_health(await self.check_health(), stage="startup")

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
            self._engine = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Request-scoped session; rolled back if the request fails"""
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    def get_redis(self) -> redis.Redis:
        if not self._redis:
            raise RuntimeError("Redis not configured")
        return self._redis

    async def check_health(self) -> Dict[str, bool]:
        """Reachability of each backend; Redis counts as healthy when disabled"""
        health = {"database": False, "redis": not self.redis_enabled}

        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            health["database"] = True
        except (RuntimeError, SQLAlchemyError, OSError) as e:
            infra_logger.log_backend_error("database", str(e))

        if self._redis is not None:
            try:
                health["redis"] = bool(await self._redis.ping())
            except (RedisError, OSError) as e:
                infra_logger.log_backend_error("redis", str(e))

        return health


# Global database manager instance
database_manager = DatabaseManager()
