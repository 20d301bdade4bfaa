"""
Sliding-Window Rate Limiter
Counts events in the rate limit log table
"""

from datetime import datetime, timedelta, timezone

from ..core.errors import RateLimitedError
from ..database.repositories.rate_limit_repository import RateLimitRepository


class RateLimiter:
    """Approximate sliding-window limiter backed by the rate_limits table"""

    def __init__(self, repository: RateLimitRepository):
        self.repository = repository

    async def hit(
        self,
        action: str,
        identifier: str,
        limit: int,
        window: timedelta = timedelta(hours=1),
        message: str = "Too many attempts. Try again later."
    ) -> None:
        """Raise RateLimitedError when the window is full, else record one event"""
        since = datetime.now(timezone.utc) - window
        used = await self.repository.count_since(action, identifier, since)
        if used >= limit:
            raise RateLimitedError(message)
        await self.repository.record(action, identifier)

    async def exceeded(
        self,
        action: str,
        identifier: str,
        limit: int,
        window: timedelta = timedelta(hours=1)
    ) -> bool:
        """Check the window without recording"""
        since = datetime.now(timezone.utc) - window
        return await self.repository.count_since(action, identifier, since) >= limit

    async def record(self, action: str, identifier: str) -> None:
        await self.repository.record(action, identifier)
