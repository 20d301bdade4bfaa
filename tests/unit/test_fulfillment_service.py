"""
Test suite for the fulfillment orchestrator
Preconditions, genre matching, de-duplication and provider dispatch
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from beatmarket.core.errors import (
    DuplicateRequestError,
    PreconditionError,
    ProviderError,
    RateLimitedError,
    ValidationError,
)
from beatmarket.core.result import Result
from beatmarket.database.schemas import GenerationRequest
from beatmarket.services.fulfillment_service import FulfillmentService


def generation_request(**overrides):
    values = {
        "title": "Night Drive",
        "genre": "lofi",
        "style": "dusty drums, warm keys",
        "provider_api_key": "sk-provider",
    }
    values.update(overrides)
    return GenerationRequest(**values)


class TestFulfillmentService:
    """Test suite for FulfillmentService"""

    @pytest.fixture
    def cache(self):
        return AsyncMock()

    @pytest.fixture
    def service(self, session, provider, cache, rate_limiter, beat_repo, agent_repo, beat_factory):
        beat_repo.count_created_since.return_value = 0
        beat_repo.fail_stale_generating.return_value = 0
        beat_repo.list_generating_since.return_value = []
        beat_repo.create_siblings.side_effect = lambda rows: [
            beat_factory(title=row["title"], status="generating", task_id=row["task_id"], suno_id=None)
            for row in rows
        ]
        return FulfillmentService(
            session,
            provider_factory=provider,
            credential_cache=cache,
            rate_limiter=rate_limiter,
            beats=beat_repo,
            agents=agent_repo
        )

    @pytest.mark.asyncio
    async def test_generate_creates_two_siblings(self, service, agent, provider, cache, beat_repo):
        response = await service.generate(agent, generation_request())

        assert response.success
        assert response.task_id == "task-123"
        assert len(response.beats) == 2
        assert response.agent["handle"] == "lofi_bot"

        rows = beat_repo.create_siblings.call_args.args[0]
        assert [row["title"] for row in rows] == ["Night Drive", "Night Drive (v2)"]
        assert all(row["task_id"] == "task-123" for row in rows)
        assert all(row["status"] == "generating" for row in rows)
        assert all(row["price"] == 4.99 and row["stems_price"] == 14.99 for row in rows)

        assert provider.api_keys == ["sk-provider"]
        assert "secret=" in provider.generate.call_args.kwargs["callback_url"]
        cache.store.assert_awaited_once_with("task-123", "sk-provider")

    @pytest.mark.asyncio
    async def test_price_override_applied_to_both_siblings(self, service, agent, beat_repo):
        await service.generate(agent, generation_request(price="7.50", stems_price=5))

        rows = beat_repo.create_siblings.call_args.args[0]
        assert all(row["price"] == 7.5 for row in rows)
        # Below the stems floor falls back to the agent default
        assert all(row["stems_price"] == 14.99 for row in rows)

    @pytest.mark.asyncio
    async def test_missing_paypal_is_precondition_failure(self, service, agent_factory, provider):
        agent = agent_factory(paypal_email=None)

        with pytest.raises(PreconditionError) as exc:
            await service.generate(agent, generation_request())

        assert "PayPal" in exc.value.message
        assert exc.value.fix
        provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_each_missing_price_has_its_own_error(self, service, agent_factory):
        with pytest.raises(PreconditionError) as beat_price:
            await service.generate(agent_factory(default_beat_price=None), generation_request())
        with pytest.raises(PreconditionError) as stems_price:
            await service.generate(agent_factory(default_stems_price=Decimal("5.00")), generation_request())

        assert "beat price" in beat_price.value.message
        assert "stems price" in stems_price.value.message
        assert beat_price.value.message != stems_price.value.message

    @pytest.mark.asyncio
    async def test_genre_outside_declared_list_rejected(self, service, agent, provider, beat_repo):
        with pytest.raises(ValidationError) as exc:
            await service.generate(agent, generation_request(genre="rock"))

        body = exc.value.to_dict()
        assert "lofi, jazz, ambient" in body["error"]
        assert body["valid_genres"] == ["lofi", "jazz", "ambient"]
        provider.generate.assert_not_awaited()
        beat_repo.create_siblings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_genre_match_is_case_insensitive(self, service, agent, beat_repo):
        await service.generate(agent, generation_request(genre="LoFi"))

        rows = beat_repo.create_siblings.call_args.args[0]
        assert rows[0]["genre"] == "lofi"

    @pytest.mark.asyncio
    async def test_vocal_terms_rejected(self, service, agent, provider):
        with pytest.raises(ValidationError):
            await service.generate(agent, generation_request(style="lofi with female vocals"))

        provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_model_rejected(self, service, agent):
        with pytest.raises(ValidationError) as exc:
            await service.generate(agent, generation_request(model="V1"))

        assert "V4" in exc.value.message

    @pytest.mark.asyncio
    async def test_pending_generations_block_new_request(self, service, agent, provider, beat_repo, beat_factory):
        beat_repo.list_generating_since.return_value = [
            beat_factory(status="generating"),
            beat_factory(status="generating"),
        ]

        with pytest.raises(DuplicateRequestError) as exc:
            await service.generate(agent, generation_request())

        assert exc.value.status_code == 409
        assert len(exc.value.extra["pending_beats"]) == 2
        provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_generations_swept_before_pending_check(self, service, agent, beat_repo):
        await service.generate(agent, generation_request())

        beat_repo.fail_stale_generating.assert_awaited_once()
        assert beat_repo.fail_stale_generating.call_args.kwargs["agent_id"] == agent.id

    @pytest.mark.asyncio
    async def test_daily_limit(self, service, agent, beat_repo, provider):
        beat_repo.count_created_since.return_value = 50

        with pytest.raises(RateLimitedError):
            await service.generate(agent, generation_request())

        provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_creates_no_beats(self, service, agent, provider, beat_repo, cache):
        provider.generate.return_value = Result.err("Provider API error", status_code=401)

        with pytest.raises(ProviderError) as exc:
            await service.generate(agent, generation_request())

        assert exc.value.status_code == 401
        beat_repo.create_siblings.assert_not_awaited()
        cache.store.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credential_cache_outage_does_not_fail_generation(self, service, agent, cache):
        cache.store.side_effect = RedisError("connection refused")

        response = await service.generate(agent, generation_request())

        assert len(response.beats) == 2

    def test_agent_without_genres(self, agent_factory):
        with pytest.raises(PreconditionError):
            FulfillmentService.resolve_genre(agent_factory(genres=[]), "lofi")
