"""
Email Verification Repository
Short-lived, single-use buyer contact verification records
"""

import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import EmailVerification
from .base import BaseRepository


class VerificationRepository(BaseRepository[EmailVerification]):
    """Repository for email verification records"""

    def __init__(self, session: AsyncSession):
        super().__init__(EmailVerification, session)

    async def count_sent_since(self, email: str, since: datetime) -> int:
        return await self.count(
            EmailVerification.email == email,
            EmailVerification.created_at >= since
        )

    async def latest_pending(self, email: str, now: datetime) -> Optional[EmailVerification]:
        """Newest unverified, unexpired code for an address"""
        result = await self.session.execute(
            select(EmailVerification)
            .where(
                EmailVerification.email == email,
                EmailVerification.verified.is_(False),
                EmailVerification.expires_at > now
            )
            .order_by(EmailVerification.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_verified(self, verification_id: uuid.UUID) -> bool:
        changed = await self.update_where(
            verification_id,
            {"verified": False},
            verified=True,
            verified_at=datetime.now(timezone.utc)
        )
        return changed == 1

    async def find_usable(self, email: str, verified_since: datetime) -> Optional[EmailVerification]:
        """Verified, unconsumed record inside the order window"""
        result = await self.session.execute(
            select(EmailVerification)
            .where(
                EmailVerification.email == email,
                EmailVerification.verified.is_(True),
                EmailVerification.consumed_at.is_(None),
                EmailVerification.verified_at >= verified_since
            )
            .order_by(EmailVerification.verified_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def consume(self, verification_id: uuid.UUID) -> bool:
        """Use a record once; False means another order already took it"""
        changed = await self.update_where(
            verification_id,
            {"consumed_at": None},
            consumed_at=datetime.now(timezone.utc)
        )
        return changed == 1

    async def restore(self, verification_id: uuid.UUID) -> bool:
        """Give a consumed record back when no order came of it"""
        changed = await self.update_fields(verification_id, consumed_at=None)
        return changed == 1
