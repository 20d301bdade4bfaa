"""
Rate Limit Repository
Sliding-window event log
"""

from datetime import datetime
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import RateLimitEvent
from .base import BaseRepository, RepositoryError


class RateLimitRepository(BaseRepository[RateLimitEvent]):
    """Repository for rate limit log rows"""

    def __init__(self, session: AsyncSession):
        super().__init__(RateLimitEvent, session)

    async def count_since(self, action: str, identifier: str, since: datetime) -> int:
        return await self.count(
            RateLimitEvent.action == action,
            RateLimitEvent.identifier == identifier,
            RateLimitEvent.created_at >= since
        )

    async def record(self, action: str, identifier: str) -> None:
        await self.create(action=action, identifier=identifier)

    async def purge_older_than(self, cutoff: datetime) -> int:
        try:
            result = await self.session.execute(
                delete(RateLimitEvent).where(RateLimitEvent.created_at < cutoff)
            )
            await self.session.commit()
            return result.rowcount
        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to purge rate limit log: {str(e)}")
