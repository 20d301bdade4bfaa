"""
Maintenance Sweeps
Expires stale orders, purges the rate limit log and fails abandoned generations
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.logging import pipeline_logger
from ..database.repositories.beat_repository import BeatRepository
from ..database.repositories.purchase_repository import PurchaseRepository
from ..database.repositories.rate_limit_repository import RateLimitRepository

settings = get_settings()


class MaintenanceService:

    def __init__(
        self,
        session: AsyncSession,
        beats: Optional[BeatRepository] = None,
        purchases: Optional[PurchaseRepository] = None,
        rate_limits: Optional[RateLimitRepository] = None
    ):
        self.session = session
        self.beats = beats or BeatRepository(session)
        self.purchases = purchases or PurchaseRepository(session)
        self.rate_limits = rate_limits or RateLimitRepository(session)

    async def sweep(self) -> Dict[str, int]:
        now = datetime.now(timezone.utc)

        expired_orders = await self.purchases.expire_pending(now - timedelta(hours=settings.ORDER_EXPIRY_HOURS))
        purged_events = await self.rate_limits.purge_older_than(
            now - timedelta(hours=settings.RATE_LIMIT_RETENTION_HOURS)
        )
        failed_beats = await self.beats.fail_stale_generating(
            now - timedelta(minutes=settings.STALE_GENERATION_MINUTES)
        )

        pipeline_logger.log_sweep("ExpireOrders", expired_orders)
        pipeline_logger.log_sweep("PurgeRateLimits", purged_events)
        pipeline_logger.log_sweep("FailStaleGenerations", failed_beats)

        return {
            "expired_orders": expired_orders,
            "purged_rate_limit_events": purged_events,
            "failed_beats": failed_beats,
        }
