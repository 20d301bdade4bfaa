"""
Test suite for order creation and capture
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from beatmarket.core.errors import (
    DuplicateRequestError,
    ForbiddenError,
    GoneError,
    IntegrityViolation,
    ProviderError,
    ValidationError,
)
from beatmarket.core.result import Result
from beatmarket.core.tokens import verify_download_token
from beatmarket.database.schemas import CaptureResponse, OrderCreateResponse
from beatmarket.services.entitlement_service import (
    EntitlementService,
    resolve_order_amount,
    split_revenue,
)
from beatmarket.services.payment_client import CaptureOutcome


@pytest.mark.unit
class TestPricing:

    def test_revenue_split(self):
        assert split_revenue(4.99) == (1.0, 3.99)
        assert split_revenue(14.99) == (3.0, 11.99)
        assert split_revenue(10.0) == (2.0, 8.0)

    def test_beat_override_wins(self, agent, beat_factory):
        beat = beat_factory(price=Decimal("6.50"), stems_price=Decimal("19.99"))

        assert resolve_order_amount(beat, agent, "track") == 6.5
        assert resolve_order_amount(beat, agent, "stems") == 19.99

    def test_agent_default_then_floor(self, agent_factory, beat_factory):
        beat = beat_factory()

        assert resolve_order_amount(beat, agent_factory(), "track") == 4.99
        bare = agent_factory(default_beat_price=None, default_stems_price=None)
        assert resolve_order_amount(beat, bare, "track") == 2.99
        assert resolve_order_amount(beat, bare, "stems") == 9.99


class TestEntitlementService:
    """Test suite for EntitlementService"""

    @pytest.fixture
    def payments(self):
        payments = AsyncMock()
        payments.create_order.return_value = Result.ok("ORDER-1")
        payments.capture_order.return_value = Result.ok(
            CaptureOutcome(status="COMPLETED", captured_amount=4.99, capture_id="CAP-1")
        )
        payments.refund_capture.return_value = Result.ok("REFUND-1")
        payments.send_payout.return_value = Result.ok("BATCH-1")
        return payments

    @pytest.fixture
    def notifier(self):
        return AsyncMock()

    @pytest.fixture
    def verifications(self):
        verifications = AsyncMock()
        verifications.find_usable.return_value = SimpleNamespace(id="verification-1")
        return verifications

    @pytest.fixture
    def purchase(self, beat, purchase_factory):
        return purchase_factory(beat_id=beat.id)

    @pytest.fixture
    def service(
        self, session, payments, notifier, rate_limiter, beat_repo, agent_repo, purchase_repo, verifications,
        beat, purchase
    ):
        beat_repo.get.return_value = beat
        beat_repo.mark_sold.return_value = True
        purchase_repo.create.return_value = purchase
        purchase_repo.get_by_order_id.return_value = purchase
        return EntitlementService(
            session,
            payments=payments,
            notifier=notifier,
            rate_limiter=rate_limiter,
            beats=beat_repo,
            agents=agent_repo,
            purchases=purchase_repo,
            verifications=verifications
        )

    # Order creation

    @pytest.mark.asyncio
    async def test_create_order_uses_server_price(self, service, beat, payments, purchase_repo, verifications):
        response = await service.create_order(beat.id, "Buyer@Example.com", "track", "203.0.113.7")

        assert response.order_id == "ORDER-1"
        assert response.amount == "4.99"
        assert response.platform_fee == "1.00"
        assert response.seller_share == "3.99"

        assert payments.create_order.call_args.args[1] == 4.99
        created = purchase_repo.create.call_args.kwargs
        assert created["buyer_email"] == "buyer@example.com"
        assert created["paypal_status"] == "pending"
        assert created["seller_paypal"] == "seller@example.com"
        verifications.consume.assert_awaited_once_with("verification-1")

    @pytest.mark.asyncio
    async def test_create_order_requires_verified_email(self, service, beat, payments, verifications):
        verifications.find_usable.return_value = None

        with pytest.raises(ForbiddenError):
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        payments.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_order_for_sold_beat(self, service, beat, payments):
        beat.sold = True

        with pytest.raises(GoneError):
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        payments.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stems_tier_requires_stems(self, service, beat):
        with pytest.raises(ValidationError):
            await service.create_order(beat.id, "buyer@example.com", "stems", "203.0.113.7")

    @pytest.mark.asyncio
    async def test_seller_without_payout_destination(self, service, beat, agent_repo, agent_factory, payments):
        agent_repo.get.return_value = agent_factory(paypal_email=None)

        with pytest.raises(ValidationError):
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        payments.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_failure_creates_no_purchase(self, service, beat, payments, purchase_repo, verifications):
        payments.create_order.return_value = Result.err("boom", status_code=500)

        with pytest.raises(ProviderError):
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        purchase_repo.create.assert_not_awaited()
        verifications.restore.assert_awaited_once_with("verification-1")

    @pytest.mark.asyncio
    async def test_verification_taken_by_another_order(self, service, beat, payments, purchase_repo, verifications):
        verifications.consume.return_value = False

        with pytest.raises(ForbiddenError) as exc:
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        assert exc.value.message == "Email verification already used"
        payments.create_order.assert_not_awaited()
        purchase_repo.create.assert_not_awaited()

    # Capture

    @pytest.mark.asyncio
    async def test_capture_completes_sale(
        self, service, beat, purchase, purchase_repo, beat_repo, agent_repo, notifier, payments
    ):
        response = await service.capture_order("ORDER-1", "203.0.113.7")

        assert response.success
        assert not response.already_captured
        assert "/api/downloads?token=" in response.download_url
        assert response.max_downloads == 5

        beat_repo.mark_sold.assert_awaited_once_with(beat.id)
        completed = purchase_repo.complete_capture.call_args.kwargs
        assert completed["paypal_capture_id"] == "CAP-1"
        capability = verify_download_token(completed["download_token"])
        assert capability.resource_id == str(purchase.id)
        assert capability.subject_id == str(beat.id)

        agent_repo.increment_karma.assert_awaited_once_with(beat.agent_id, 10)
        payments.send_payout.assert_awaited_once()
        assert payments.send_payout.call_args.args[:2] == ("seller@example.com", 3.99)
        purchase_repo.update_fields.assert_awaited_once_with(
            purchase.id, payout_batch_id="BATCH-1", payout_status="pending", payout_amount=3.99
        )
        notifier.send_download_link.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_amount_mismatch_fails_purchase(self, service, purchase, purchase_repo, beat_repo, payments):
        payments.capture_order.return_value = Result.ok(
            CaptureOutcome(status="COMPLETED", captured_amount=4.98, capture_id="CAP-1")
        )

        with pytest.raises(IntegrityViolation) as exc:
            await service.capture_order("ORDER-1", "203.0.113.7")

        assert exc.value.status_code == 400
        assert exc.value.message == "Payment verification failed"
        purchase_repo.fail.assert_awaited_once_with(purchase.id)
        beat_repo.mark_sold.assert_not_awaited()
        purchase_repo.complete_capture.assert_not_awaited()
        payments.send_payout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_sale_race_refunds(self, service, purchase, purchase_repo, beat_repo, payments):
        beat_repo.mark_sold.return_value = False

        with pytest.raises(GoneError):
            await service.capture_order("ORDER-1", "203.0.113.7")

        payments.refund_capture.assert_awaited_once_with("CAP-1")
        purchase_repo.fail.assert_awaited_once_with(purchase.id)
        purchase_repo.complete_capture.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_capture_of_already_sold_beat(self, service, beat, purchase_repo, payments):
        beat.sold = True

        with pytest.raises(GoneError):
            await service.capture_order("ORDER-1", "203.0.113.7")

        payments.capture_order.assert_not_awaited()
        purchase_repo.fail.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_capture_failure(self, service, purchase_repo, payments):
        payments.capture_order.return_value = Result.err("declined", status_code=422)

        with pytest.raises(ValidationError) as exc:
            await service.capture_order("ORDER-1", "203.0.113.7")

        assert exc.value.message == "Payment capture failed. Your card was not charged."
        purchase_repo.fail.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_capture_claimed_by_another_request(self, service, purchase, purchase_repo, payments):
        async def claimed_elsewhere(obj):
            return SimpleNamespace(**{**vars(obj), "paypal_status": "capturing"})

        purchase_repo.claim_capture.return_value = False
        purchase_repo.reload.side_effect = claimed_elsewhere

        with pytest.raises(DuplicateRequestError) as exc:
            await service.capture_order("ORDER-1", "203.0.113.7")

        assert exc.value.status_code == 409
        payments.capture_order.assert_not_awaited()
        purchase_repo.fail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_capture_claim_lost_to_completed_capture(self, service, purchase, purchase_repo, payments):
        async def completed_elsewhere(obj):
            return SimpleNamespace(**{
                **vars(obj),
                "paypal_status": "completed",
                "download_token": "signed.token",
                "download_expires": datetime.now(timezone.utc) + timedelta(hours=3),
            })

        purchase_repo.claim_capture.return_value = False
        purchase_repo.reload.side_effect = completed_elsewhere

        response = await service.capture_order("ORDER-1", "203.0.113.7")

        assert response.already_captured
        assert response.download_url.endswith("token=signed.token")
        payments.capture_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_capturing_order_reports_conflict(self, service, purchase, purchase_repo, payments):
        purchase.paypal_status = "capturing"

        with pytest.raises(DuplicateRequestError):
            await service.capture_order("ORDER-1", "203.0.113.7")

        purchase_repo.claim_capture.assert_not_awaited()
        payments.capture_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completion_lost_after_payment_releases_sale_and_refunds(
        self, service, beat, purchase, purchase_repo, beat_repo, payments, notifier
    ):
        purchase_repo.complete_capture.return_value = False

        with pytest.raises(DuplicateRequestError):
            await service.capture_order("ORDER-1", "203.0.113.7")

        beat_repo.release_sale.assert_awaited_once_with(beat.id)
        payments.refund_capture.assert_awaited_once_with("CAP-1")
        purchase_repo.fail.assert_awaited_once_with(purchase.id)
        payments.send_payout.assert_not_awaited()
        notifier.send_download_link.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeat_capture_returns_same_link(self, service, purchase, payments, beat_repo):
        purchase.paypal_status = "completed"
        purchase.download_token = "signed.token"
        purchase.download_expires = datetime.now(timezone.utc) + timedelta(hours=3)

        response = await service.capture_order("ORDER-1", "203.0.113.7")

        assert response.already_captured
        assert response.download_url.endswith("token=signed.token")
        payments.capture_order.assert_not_awaited()
        beat_repo.mark_sold.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeat_capture_after_expiry(self, service, purchase):
        purchase.paypal_status = "completed"
        purchase.download_token = "signed.token"
        purchase.download_expires = datetime.now(timezone.utc) - timedelta(minutes=1)

        with pytest.raises(GoneError):
            await service.capture_order("ORDER-1", "203.0.113.7")

    @pytest.mark.asyncio
    async def test_failed_order_cannot_be_captured(self, service, purchase, payments):
        purchase.paypal_status = "failed"

        with pytest.raises(ValidationError):
            await service.capture_order("ORDER-1", "203.0.113.7")

        payments.capture_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payout_failure_does_not_fail_capture(self, service, purchase, purchase_repo, payments):
        payments.send_payout.return_value = Result.err("payouts disabled", status_code=403)

        response = await service.capture_order("ORDER-1", "203.0.113.7")

        assert response.success
        purchase_repo.update_fields.assert_awaited_once_with(
            purchase.id, payout_status="failed", payout_amount=3.99
        )


async def _settle(result):
    """Processor round trip that lets other requests run in between"""
    for _ in range(3):
        await asyncio.sleep(0)
    return result


class TestConcurrentCheckout:
    """Requests racing on shared rows; stores honour compare-and-swap updates"""

    @pytest.fixture
    def payments(self):
        payments = AsyncMock()

        async def create_order(beat_id, amount, description):
            return await _settle(Result.ok("ORDER-NEW"))

        async def capture_order(order_id):
            outcome = CaptureOutcome(status="COMPLETED", captured_amount=4.99, capture_id=f"CAP-{order_id}")
            return await _settle(Result.ok(outcome))

        payments.create_order.side_effect = create_order
        payments.capture_order.side_effect = capture_order
        payments.refund_capture.return_value = Result.ok("REFUND-1")
        payments.send_payout.return_value = Result.ok("BATCH-1")
        return payments

    def make_service(self, session, payments, rate_limiter, agent_repo, beats, purchases, verifications=None):
        return EntitlementService(
            session,
            payments=payments,
            notifier=AsyncMock(),
            rate_limiter=rate_limiter,
            beats=beats,
            agents=agent_repo,
            purchases=purchases,
            verifications=verifications or AsyncMock()
        )

    @pytest.mark.asyncio
    async def test_double_submitted_capture_charges_once(
        self, session, payments, rate_limiter, agent_repo, beat, purchase_factory,
        beat_store_factory, purchase_store_factory
    ):
        purchase = purchase_factory(beat_id=beat.id)
        service = self.make_service(
            session, payments, rate_limiter, agent_repo,
            beat_store_factory(beat), purchase_store_factory(purchase)
        )

        results = await asyncio.gather(
            service.capture_order("ORDER-1", "203.0.113.7"),
            service.capture_order("ORDER-1", "203.0.113.7"),
            return_exceptions=True
        )

        assert len([r for r in results if isinstance(r, CaptureResponse)]) == 1
        assert len([r for r in results if isinstance(r, DuplicateRequestError)]) == 1
        payments.capture_order.assert_awaited_once_with("ORDER-1")
        payments.refund_capture.assert_not_awaited()
        assert beat.sold is True
        assert purchase.paypal_status == "completed"
        assert purchase.paypal_capture_id == "CAP-ORDER-1"
        assert verify_download_token(purchase.download_token).resource_id == str(purchase.id)

    @pytest.mark.asyncio
    async def test_two_buyers_of_one_beat_sell_it_once(
        self, session, payments, rate_limiter, agent_repo, beat, purchase_factory,
        beat_store_factory, purchase_store_factory
    ):
        first = purchase_factory(beat_id=beat.id, paypal_order_id="ORDER-1")
        second = purchase_factory(beat_id=beat.id, paypal_order_id="ORDER-2", buyer_email="other@example.com")
        service = self.make_service(
            session, payments, rate_limiter, agent_repo,
            beat_store_factory(beat), purchase_store_factory(first, second)
        )

        results = await asyncio.gather(
            service.capture_order("ORDER-1", "203.0.113.7"),
            service.capture_order("ORDER-2", "198.51.100.4"),
            return_exceptions=True
        )

        assert len([r for r in results if isinstance(r, CaptureResponse)]) == 1
        assert len([r for r in results if isinstance(r, GoneError)]) == 1
        assert beat.sold is True
        assert sorted([first.paypal_status, second.paypal_status]) == ["completed", "failed"]
        # Every charge except the winning one is returned
        assert payments.refund_capture.await_count == payments.capture_order.await_count - 1

    @pytest.mark.asyncio
    async def test_one_verification_opens_one_order(
        self, session, payments, rate_limiter, agent_repo, beat, beat_repo, purchase_repo, purchase_factory,
        verification_store_factory
    ):
        verification = SimpleNamespace(
            id=uuid.uuid4(), email="buyer@example.com", verified=True, consumed_at=None
        )
        beat_repo.get.return_value = beat
        purchase_repo.create.return_value = purchase_factory(beat_id=beat.id, paypal_order_id="ORDER-NEW")
        service = self.make_service(
            session, payments, rate_limiter, agent_repo,
            beat_repo, purchase_repo, verification_store_factory(verification)
        )

        results = await asyncio.gather(
            service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7"),
            service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7"),
            return_exceptions=True
        )

        assert len([r for r in results if isinstance(r, OrderCreateResponse)]) == 1
        assert len([r for r in results if isinstance(r, ForbiddenError)]) == 1
        payments.create_order.assert_awaited_once()
        purchase_repo.create.assert_awaited_once()
        assert verification.consumed_at is not None

    @pytest.mark.asyncio
    async def test_failed_processor_call_returns_verification(
        self, session, payments, rate_limiter, agent_repo, beat, beat_repo, purchase_repo,
        verification_store_factory
    ):
        verification = SimpleNamespace(
            id=uuid.uuid4(), email="buyer@example.com", verified=True, consumed_at=None
        )
        beat_repo.get.return_value = beat
        payments.create_order.side_effect = None
        payments.create_order.return_value = Result.err("boom", status_code=500)
        service = self.make_service(
            session, payments, rate_limiter, agent_repo,
            beat_repo, purchase_repo, verification_store_factory(verification)
        )

        with pytest.raises(ProviderError):
            await service.create_order(beat.id, "buyer@example.com", "track", "203.0.113.7")

        assert verification.consumed_at is None
