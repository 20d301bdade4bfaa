"""
Test suite for buyer email verification
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from beatmarket.core.errors import ProviderError, RateLimitedError, ValidationError
from beatmarket.core.result import Result
from beatmarket.services.verification_service import VerificationService, generate_code


class TestVerificationService:

    @pytest.fixture
    def notifier(self):
        notifier = AsyncMock()
        notifier.send_verification_code.return_value = Result.ok(None)
        return notifier

    @pytest.fixture
    def verifications(self):
        verifications = AsyncMock()
        verifications.count_sent_since.return_value = 0
        verifications.latest_pending.return_value = SimpleNamespace(id="v-1", code="123456")
        return verifications

    @pytest.fixture
    def service(self, session, notifier, rate_limiter, verifications):
        return VerificationService(
            session,
            notifier=notifier,
            rate_limiter=rate_limiter,
            verifications=verifications
        )

    def test_codes_are_six_digits(self):
        for _ in range(20):
            code = generate_code()
            assert len(code) == 6 and code.isdigit()

    @pytest.mark.asyncio
    async def test_send_code(self, service, notifier, verifications):
        response = await service.send_code("Buyer@Example.com")

        assert response["success"]
        assert response["expires_in_minutes"] == 10
        created = verifications.create.call_args.kwargs
        assert created["email"] == "buyer@example.com"
        assert created["verified"] is False
        notifier.send_verification_code.assert_awaited_once_with("buyer@example.com", created["code"])

    @pytest.mark.asyncio
    async def test_send_limit(self, service, verifications, notifier):
        verifications.count_sent_since.return_value = 5

        with pytest.raises(RateLimitedError):
            await service.send_code("buyer@example.com")

        notifier.send_verification_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure(self, service, notifier):
        notifier.send_verification_code.return_value = Result.err("resend down", status_code=503)

        with pytest.raises(ProviderError):
            await service.send_code("buyer@example.com")

    @pytest.mark.asyncio
    async def test_verify_correct_code(self, service, verifications, rate_limiter):
        response = await service.verify_code("buyer@example.com", "123456")

        assert response["verified"] is True
        verifications.mark_verified.assert_awaited_once_with("v-1")
        rate_limiter.record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_code_counts_as_attempt(self, service, verifications, rate_limiter):
        with pytest.raises(ValidationError):
            await service.verify_code("buyer@example.com", "654321")

        rate_limiter.record.assert_awaited_once_with("verify_email", "buyer@example.com")
        verifications.mark_verified.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_too_many_attempts(self, service, rate_limiter, verifications):
        rate_limiter.exceeded.return_value = True

        with pytest.raises(RateLimitedError):
            await service.verify_code("buyer@example.com", "123456")

        verifications.latest_pending.assert_not_awaited()
