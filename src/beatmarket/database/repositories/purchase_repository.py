"""
Purchase Repository
Orders, capture state and bounded download counters
"""

import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Purchase
from .base import BaseRepository, RepositoryError


class PurchaseRepository(BaseRepository[Purchase]):
    """Repository for purchase database operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Purchase, session)

    async def get_by_order_id(self, order_id: str) -> Optional[Purchase]:
        result = await self.session.execute(
            select(Purchase).where(Purchase.paypal_order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def claim_capture(self, purchase_id: uuid.UUID) -> bool:
        """Reserve a pending purchase for a single capture attempt"""
        changed = await self.update_where(
            purchase_id,
            {"paypal_status": "pending"},
            paypal_status="capturing"
        )
        return changed == 1

    async def complete_capture(self, purchase_id: uuid.UUID, **values) -> bool:
        """Move a claimed purchase to completed exactly once"""
        changed = await self.update_where(
            purchase_id,
            {"paypal_status": "capturing"},
            paypal_status="completed",
            **values
        )
        return changed == 1

    async def fail(self, purchase_id: uuid.UUID) -> int:
        """Fail a purchase held by the current capture attempt"""
        return await self.update_where(
            purchase_id,
            {"paypal_status": "capturing"},
            paypal_status="failed"
        )

    async def increment_download_count(
        self,
        purchase_id: uuid.UUID,
        max_downloads: int
    ) -> Optional[int]:
        """
        Consume one download unit if the ceiling has not been reached.

        Returns the new count, or None when the purchase is already at the
        ceiling.
        """
        try:
            result = await self.session.execute(
                update(Purchase)
                .where(
                    Purchase.id == purchase_id,
                    Purchase.download_count < max_downloads
                )
                .values(download_count=Purchase.download_count + 1)
                .returning(Purchase.download_count)
            )
            new_count = result.scalar_one_or_none()
            await self.session.commit()
            return new_count

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to increment download count: {str(e)}")

    async def release_download(self, purchase_id: uuid.UUID, consumed_count: int) -> bool:
        """Give back a unit consumed by an aborted request, at most once"""
        changed = await self.update_where(
            purchase_id,
            {"download_count": consumed_count},
            download_count=consumed_count - 1
        )
        return changed == 1

    async def expire_pending(self, older_than: datetime) -> int:
        """Sweep pending orders past their lifetime to expired"""
        try:
            result = await self.session.execute(
                update(Purchase)
                .where(
                    Purchase.paypal_status == "pending",
                    Purchase.created_at < older_than
                )
                .values(paypal_status="expired")
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return result.rowcount

        except Exception as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to expire orders: {str(e)}")
