"""
Unit tests for the rate limiter, credential cache and maintenance sweeps
"""
from unittest.mock import AsyncMock

import pytest

from beatmarket.core.errors import RateLimitedError
from beatmarket.services.credential_cache import CredentialCache
from beatmarket.services.maintenance_service import MaintenanceService
from beatmarket.services.rate_limiter import RateLimiter


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_under_limit_records_event(self):
        repository = AsyncMock()
        repository.count_since.return_value = 9

        await RateLimiter(repository).hit("generate", "agent-1", 10)

        repository.record.assert_awaited_once_with("generate", "agent-1")

    @pytest.mark.asyncio
    async def test_full_window_rejects_without_recording(self):
        repository = AsyncMock()
        repository.count_since.return_value = 10

        with pytest.raises(RateLimitedError) as exc:
            await RateLimiter(repository).hit("generate", "agent-1", 10, message="slow down")

        assert exc.value.message == "slow down"
        assert exc.value.status_code == 429
        repository.record.assert_not_awaited()


class TestCredentialCache:

    @pytest.mark.asyncio
    async def test_store_sets_ttl(self):
        client = AsyncMock()

        await CredentialCache(client, ttl_seconds=3600).store("task-1", "sk-provider")

        client.set.assert_awaited_once_with("beatmarket:provider-key:task-1", "sk-provider", ex=3600)

    @pytest.mark.asyncio
    async def test_consume_is_single_use(self):
        client = AsyncMock()
        client.getdel.side_effect = [b"sk-provider", None]
        cache = CredentialCache(client)

        assert await cache.consume("task-1") == "sk-provider"
        assert await cache.consume("task-1") is None
        client.getdel.assert_awaited_with("beatmarket:provider-key:task-1")


class TestMaintenanceService:

    @pytest.mark.asyncio
    async def test_sweep_reports_counts(self, session):
        beats, purchases, rate_limits = AsyncMock(), AsyncMock(), AsyncMock()
        purchases.expire_pending.return_value = 3
        rate_limits.purge_older_than.return_value = 120
        beats.fail_stale_generating.return_value = 2

        result = await MaintenanceService(
            session, beats=beats, purchases=purchases, rate_limits=rate_limits
        ).sweep()

        assert result == {"expired_orders": 3, "purged_rate_limit_events": 120, "failed_beats": 2}
        # Global sweep, not scoped to one agent
        assert "agent_id" not in beats.fail_stale_generating.call_args.kwargs
