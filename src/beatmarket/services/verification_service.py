"""
Buyer Verification Service
Six-digit email codes gating order creation
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import ProviderError, RateLimitedError, ValidationError
from ..core.logging import payment_logger
from ..core.validation import normalize_email
from ..database.repositories.rate_limit_repository import RateLimitRepository
from ..database.repositories.verification_repository import VerificationRepository
from .notification_service import EmailNotifier
from .rate_limiter import RateLimiter

settings = get_settings()

VERIFY_ATTEMPT_ACTION = "verify_email"


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


class VerificationService:
    """Issues and checks single-use buyer verification codes"""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[EmailNotifier] = None,
        rate_limiter: Optional[RateLimiter] = None,
        verifications: Optional[VerificationRepository] = None
    ):
        self.session = session
        self.notifier = notifier or EmailNotifier()
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitRepository(session))
        self.verifications = verifications or VerificationRepository(session)

    async def send_code(self, email: str) -> Dict[str, object]:
        address = normalize_email(email)
        now = datetime.now(timezone.utc)

        sent = await self.verifications.count_sent_since(address, now - timedelta(hours=1))
        if sent >= settings.VERIFICATION_SEND_LIMIT:
            raise RateLimitedError("Too many verification codes requested. Try again later.")

        code = generate_code()
        await self.verifications.create(
            email=address,
            code=code,
            verified=False,
            expires_at=now + timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
        )

        result = await self.notifier.send_verification_code(address, code)
        if result.is_err():
            raise ProviderError("Could not send the verification email. Try again later.", status_code=502)

        return {
            "success": True,
            "message": "Verification code sent",
            "expires_in_minutes": settings.VERIFICATION_CODE_TTL_MINUTES,
        }

    async def verify_code(self, email: str, code: str) -> Dict[str, object]:
        address = normalize_email(email)
        now = datetime.now(timezone.utc)

        if await self.rate_limiter.exceeded(
            VERIFY_ATTEMPT_ACTION, address, settings.VERIFICATION_ATTEMPT_LIMIT
        ):
            raise RateLimitedError("Too many failed attempts. Request a new code later.")

        pending = await self.verifications.latest_pending(address, now)
        if pending is None or not secrets.compare_digest(pending.code, (code or "").strip()):
            await self.rate_limiter.record(VERIFY_ATTEMPT_ACTION, address)
            payment_logger.log_payment_error("VerifyEmail", "invalid or expired code")
            raise ValidationError("Invalid or expired verification code")

        await self.verifications.mark_verified(pending.id)
        return {
            "success": True,
            "verified": True,
            "valid_for_minutes": settings.VERIFICATION_WINDOW_MINUTES,
        }
