"""
Entitlement & Payment Manager
Server-priced orders, verified capture, at-most-once sale and revenue split
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    DuplicateRequestError,
    ForbiddenError,
    GoneError,
    IntegrityViolation,
    ProviderError,
    ResourceNotFoundError,
    ServiceError,
    ValidationError,
)
from ..core.logging import payment_logger
from ..core.tokens import mint_download_token
from ..core.validation import normalize_email, round_price
from ..database.models import Agent, Beat, Purchase
from ..database.repositories.agent_repository import AgentRepository
from ..database.repositories.beat_repository import BeatRepository
from ..database.repositories.purchase_repository import PurchaseRepository
from ..database.repositories.rate_limit_repository import RateLimitRepository
from ..database.repositories.verification_repository import VerificationRepository
from ..database.schemas import CaptureResponse, OrderCreateResponse
from .notification_service import EmailNotifier
from .payment_client import PayPalClient
from .rate_limiter import RateLimiter

settings = get_settings()

ORDER_ACTION = "create_order"
CAPTURE_ACTION = "capture_order"
TIERS = ("track", "stems")


def split_revenue(total: float, fee_percent: int = settings.PLATFORM_FEE_PERCENT) -> Tuple[float, float]:
    """Platform fee and seller share, both rounded to cents"""
    fee = round(total * fee_percent) / 100
    seller = round((total - fee) * 100) / 100
    return fee, seller


def _price(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def resolve_order_amount(beat: Beat, agent: Agent, tier: str) -> float:
    """
    Authoritative charge for a tier: beat override, then agent default,
    then the fixed floor.
    """
    if tier == "stems":
        amount = _price(beat.stems_price) or _price(agent.default_stems_price) or settings.MIN_STEMS_PRICE
        return round_price(max(amount, settings.MIN_STEMS_PRICE))

    amount = _price(beat.price) or _price(agent.default_beat_price) or settings.MIN_BEAT_PRICE
    return round_price(max(amount, settings.MIN_BEAT_PRICE))


def _to_cents(value: float) -> int:
    return int(round(float(value) * 100))


def _format_amount(value: float) -> str:
    return f"{value:.2f}"


class EntitlementService:
    """Creates and captures orders for beats"""

    def __init__(
        self,
        session: AsyncSession,
        payments: Optional[PayPalClient] = None,
        notifier: Optional[EmailNotifier] = None,
        rate_limiter: Optional[RateLimiter] = None,
        beats: Optional[BeatRepository] = None,
        agents: Optional[AgentRepository] = None,
        purchases: Optional[PurchaseRepository] = None,
        verifications: Optional[VerificationRepository] = None
    ):
        self.session = session
        self.payments = payments or PayPalClient()
        self.notifier = notifier or EmailNotifier()
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitRepository(session))
        self.beats = beats or BeatRepository(session)
        self.agents = agents or AgentRepository(session)
        self.purchases = purchases or PurchaseRepository(session)
        self.verifications = verifications or VerificationRepository(session)

    async def _load_sellable_beat(self, beat_id: uuid.UUID, tier: str) -> Beat:
        beat = await self.beats.get(beat_id)
        if beat is None:
            raise ResourceNotFoundError("Beat not found")
        if beat.sold:
            raise GoneError("This beat has already been sold")
        if beat.deleted_at is not None:
            raise GoneError("This beat is no longer available")
        if beat.status != "complete":
            raise ValidationError("This beat is not ready for purchase yet")
        if not beat.audio_url:
            raise ValidationError("This beat has no audio available")
        if tier == "stems" and beat.stems_status != "complete":
            raise ValidationError(
                "Stems are not available for this beat yet",
                fix="Buy the track tier or try again later"
            )
        return beat

    async def create_order(
        self,
        beat_id: uuid.UUID,
        buyer_email: str,
        tier: str,
        client_ip: str
    ) -> OrderCreateResponse:
        await self.rate_limiter.hit(ORDER_ACTION, client_ip, settings.ORDER_HOURLY_LIMIT)

        if tier not in TIERS:
            raise ValidationError("tier must be 'track' or 'stems'")
        email = normalize_email(buyer_email)

        verified_since = datetime.now(timezone.utc) - timedelta(minutes=settings.VERIFICATION_WINDOW_MINUTES)
        verification = await self.verifications.find_usable(email, verified_since)
        if verification is None:
            raise ForbiddenError(
                "Email not verified",
                fix="Request a verification code and confirm it before checking out"
            )

        beat = await self._load_sellable_beat(beat_id, tier)

        agent = await self.agents.get(beat.agent_id)
        if agent is None or not agent.paypal_email:
            raise ValidationError("The producer of this beat cannot receive payments yet")

        amount = resolve_order_amount(beat, agent, tier)
        platform_fee, seller_share = split_revenue(amount)

        if not await self.verifications.consume(verification.id):
            raise ForbiddenError(
                "Email verification already used",
                fix="Request a new verification code for this order"
            )

        description = f"{beat.title} ({'Track + Stems' if tier == 'stems' else 'Track'})"
        result = await self.payments.create_order(str(beat.id), amount, description)
        if result.is_err():
            await self.verifications.restore(verification.id)
            raise ProviderError("Failed to create payment order", status_code=502)

        purchase = await self.purchases.create(
            beat_id=beat.id,
            buyer_email=email,
            purchase_tier=tier,
            amount=amount,
            currency=settings.PAYMENT_CURRENCY,
            platform_fee=platform_fee,
            seller_share=seller_share,
            seller_paypal=agent.paypal_email,
            paypal_order_id=result.data,
            paypal_status="pending"
        )

        payment_logger.log_order_created(str(purchase.id), str(beat.id), tier, amount)

        return OrderCreateResponse(
            order_id=result.data,
            purchase_id=purchase.id,
            amount=_format_amount(amount),
            currency=settings.PAYMENT_CURRENCY,
            tier=tier,
            platform_fee=_format_amount(platform_fee),
            seller_share=_format_amount(seller_share)
        )

    async def capture_order(self, order_id: str, client_ip: str) -> CaptureResponse:
        await self.rate_limiter.hit(CAPTURE_ACTION, client_ip, settings.CAPTURE_HOURLY_LIMIT)

        purchase = await self.purchases.get_by_order_id(order_id)
        if purchase is None:
            raise ResourceNotFoundError("Order not found")

        if purchase.paypal_status == "completed":
            return self._existing_capture(purchase)
        if purchase.paypal_status != "pending":
            raise self._not_capturable(purchase.paypal_status)

        # Only the request holding the claim talks to the processor
        if not await self.purchases.claim_capture(purchase.id):
            current = await self.purchases.reload(purchase)
            if current.paypal_status == "completed":
                return self._existing_capture(current)
            raise self._not_capturable(current.paypal_status)

        beat = await self.beats.get(purchase.beat_id)
        if beat is None or beat.sold:
            await self.purchases.fail(purchase.id)
            payment_logger.log_capture(str(purchase.id), "beat_unavailable")
            raise GoneError("This beat has already been sold")

        result = await self.payments.capture_order(order_id)
        if result.is_err():
            await self.purchases.fail(purchase.id)
            payment_logger.log_capture(str(purchase.id), "failed", status_code=result.status_code)
            raise ValidationError("Payment capture failed. Your card was not charged.")

        outcome = result.data
        expected = float(purchase.amount)
        if abs(_to_cents(outcome.captured_amount) - _to_cents(expected)) > settings.AMOUNT_TOLERANCE_CENTS:
            await self.purchases.fail(purchase.id)
            payment_logger.log_capture(
                str(purchase.id),
                "amount_mismatch",
                expected=expected,
                captured=outcome.captured_amount
            )
            raise IntegrityViolation("Payment verification failed", status_code=400)

        if not await self.beats.mark_sold(beat.id):
            await self._refund_capture(purchase, outcome.capture_id, "race_lost")
            raise GoneError("This beat has already been sold. Your payment has been refunded.")

        expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.DOWNLOAD_TTL_HOURS)
        token = mint_download_token(purchase.id, beat.id, expires_at)

        completed = await self.purchases.complete_capture(
            purchase.id,
            paypal_capture_id=outcome.capture_id,
            download_token=token,
            download_expires=expires_at,
            captured_at=datetime.now(timezone.utc)
        )
        if not completed:
            # Claim lost after payment: undo the sale and return the money
            await self.beats.release_sale(beat.id)
            await self._refund_capture(purchase, outcome.capture_id, "completion_lost")
            raise DuplicateRequestError("Order changed during capture. Your payment has been refunded.")

        payment_logger.log_capture(str(purchase.id), "completed", amount=expected, tier=purchase.purchase_tier)

        await self.agents.increment_karma(beat.agent_id, settings.KARMA_PER_SALE)
        await self._pay_seller(purchase, beat)

        download_url = settings.download_url(token)
        await self.notifier.send_download_link(purchase.buyer_email, beat.title, download_url)

        return CaptureResponse(
            success=True,
            download_url=download_url,
            already_captured=False,
            expires_in=f"{settings.DOWNLOAD_TTL_HOURS} hours",
            max_downloads=settings.MAX_DOWNLOADS
        )

    def _existing_capture(self, purchase: Purchase) -> CaptureResponse:
        """Idempotent re-capture: hand back the link while it is still valid"""
        expires = purchase.download_expires
        if not purchase.download_token or expires is None or expires <= datetime.now(timezone.utc):
            raise GoneError("Download link has expired")

        payment_logger.log_capture(str(purchase.id), "already_captured")
        return CaptureResponse(
            success=True,
            download_url=settings.download_url(purchase.download_token),
            already_captured=True,
            expires_in=f"{settings.DOWNLOAD_TTL_HOURS} hours",
            max_downloads=settings.MAX_DOWNLOADS
        )

    @staticmethod
    def _not_capturable(status: str) -> ServiceError:
        if status == "capturing":
            return DuplicateRequestError(
                "Payment for this order is already being captured",
                fix="Retry in a few seconds to receive the download link"
            )
        return ValidationError(f"Order is {status}")

    async def _refund_capture(self, purchase: Purchase, capture_id: Optional[str], reason: str) -> None:
        await self.purchases.fail(purchase.id)
        payment_logger.log_capture(str(purchase.id), reason, capture_id=capture_id)

        if not capture_id:
            payment_logger.log_payment_error("RefundCapture", "no capture id to refund", purchase_id=str(purchase.id))
            return

        refund = await self.payments.refund_capture(capture_id)
        if refund.is_err():
            payment_logger.log_payment_error("RefundCapture", refund.error or "refund failed", purchase_id=str(purchase.id))

    async def _pay_seller(self, purchase: Purchase, beat: Beat) -> Dict[str, Any]:
        """Issue the seller payout; failure is recorded, never raised"""
        receiver = purchase.seller_paypal
        if not receiver:
            agent = await self.agents.get(beat.agent_id)
            receiver = agent.paypal_email if agent else None

        amount = float(purchase.seller_share)
        if not receiver:
            await self.purchases.update_fields(purchase.id, payout_status="failed")
            payment_logger.log_payment_error("Payout", "no payout destination", purchase_id=str(purchase.id))
            return {"payout_status": "failed"}

        result = await self.payments.send_payout(
            receiver,
            amount,
            f"Sale of \"{beat.title}\"",
            str(purchase.id)
        )
        values = (
            {"payout_batch_id": result.data, "payout_status": "pending", "payout_amount": amount}
            if result.is_ok()
            else {"payout_status": "failed", "payout_amount": amount}
        )
        await self.purchases.update_fields(purchase.id, **values)
        return values
