"""
BeatMarket Testing Configuration
Pytest fixtures and test setup
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from beatmarket.core.result import Result
from beatmarket.database.repositories.beat_repository import BeatRepository
from beatmarket.database.repositories.purchase_repository import PurchaseRepository
from beatmarket.database.repositories.verification_repository import VerificationRepository


def make_agent(**overrides):
    """Agent row stand-in with payout configuration complete"""
    values = {
        "id": uuid.uuid4(),
        "handle": "lofi_bot",
        "name": "Lofi Bot",
        "api_token": "agent-token",
        "genres": ["lofi", "jazz", "ambient"],
        "karma": 0,
        "paypal_email": "seller@example.com",
        "default_beat_price": Decimal("4.99"),
        "default_stems_price": Decimal("14.99"),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def make_beat(**overrides):
    """Complete, unsold beat stand-in"""
    values = {
        "id": uuid.uuid4(),
        "agent_id": uuid.uuid4(),
        "task_id": "task-123",
        "suno_id": "track-a",
        "title": "Night Drive",
        "genre": "lofi",
        "style": "dusty drums, warm keys",
        "model": "V4",
        "negative_tags": "",
        "instrumental": True,
        "bpm": 84,
        "duration": 120,
        "audio_url": "https://cdn.example.com/a.mp3",
        "stream_url": "https://cdn.example.com/a-stream",
        "image_url": None,
        "wav_url": None,
        "stems": None,
        "price": None,
        "stems_price": None,
        "sold": False,
        "deleted_at": None,
        "status": "complete",
        "wav_status": None,
        "stems_status": None,
        "created_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def make_purchase(**overrides):
    """Pending track purchase stand-in"""
    values = {
        "id": uuid.uuid4(),
        "beat_id": uuid.uuid4(),
        "buyer_email": "buyer@example.com",
        "purchase_tier": "track",
        "amount": Decimal("4.99"),
        "currency": "USD",
        "platform_fee": Decimal("1.00"),
        "seller_share": Decimal("3.99"),
        "seller_paypal": "seller@example.com",
        "paypal_order_id": "ORDER-1",
        "paypal_status": "pending",
        "paypal_capture_id": None,
        "download_token": None,
        "download_expires": None,
        "download_count": 0,
        "payout_status": None,
        "created_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class MemoryRows:
    """
    Row store for concurrency tests.

    update_where honours compare-and-swap semantics, and every read or write
    yields to the event loop so concurrent requests interleave.
    """

    def __init__(self, *rows):
        self.rows = {row.id: row for row in rows}

    async def get(self, id):
        await asyncio.sleep(0)
        return self.rows.get(id)

    async def reload(self, obj):
        return obj

    async def update_where(self, id, expected, **values):
        await asyncio.sleep(0)
        row = self.rows.get(id)
        if row is None or any(getattr(row, field) != value for field, value in expected.items()):
            return 0
        for field, value in values.items():
            setattr(row, field, value)
        return 1


class MemoryBeatRepository(MemoryRows, BeatRepository):
    pass


class MemoryPurchaseRepository(MemoryRows, PurchaseRepository):

    async def get_by_order_id(self, order_id):
        await asyncio.sleep(0)
        return next((row for row in self.rows.values() if row.paypal_order_id == order_id), None)


class MemoryVerificationRepository(MemoryRows, VerificationRepository):

    async def find_usable(self, email, verified_since):
        await asyncio.sleep(0)
        return next(
            (row for row in self.rows.values() if row.email == email and row.verified and row.consumed_at is None),
            None
        )


class FakeProvider:
    """Async context manager standing in for GenerationProviderClient"""

    def __init__(self):
        self.generate = AsyncMock(return_value=Result.ok("task-123"))
        self.convert_to_wav = AsyncMock(return_value=Result.ok({"code": 200}))
        self.separate_stems = AsyncMock(return_value=Result.ok({"code": 200}))
        self.fetch_record = AsyncMock(return_value=Result.ok({}))
        self.api_keys = []

    def __call__(self, api_key):
        self.api_keys.append(api_key)
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


@pytest.fixture
def agent():
    return make_agent()


@pytest.fixture
def beat(agent):
    return make_beat(agent_id=agent.id)


@pytest.fixture
def session():
    return AsyncMock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def beat_repo():
    repo = AsyncMock()
    repo.update_where.return_value = 1
    repo.update_fields.return_value = 1
    repo.set_job_status.return_value = 1
    repo.reload.side_effect = lambda obj: obj
    return repo


@pytest.fixture
def agent_repo(agent):
    repo = AsyncMock()
    repo.get.return_value = agent
    repo.get_handle.return_value = agent.handle
    return repo


@pytest.fixture
def purchase_repo():
    repo = AsyncMock()
    repo.claim_capture.return_value = True
    repo.fail.return_value = 1
    repo.update_fields.return_value = 1
    repo.reload.side_effect = lambda obj: obj
    repo.complete_capture.return_value = True
    repo.release_download.return_value = True
    return repo


@pytest.fixture
def rate_limiter():
    limiter = AsyncMock()
    limiter.exceeded.return_value = False
    return limiter


@pytest.fixture
def future():
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture
def beat_factory():
    return make_beat


@pytest.fixture
def purchase_factory():
    return make_purchase


@pytest.fixture
def agent_factory():
    return make_agent


@pytest.fixture
def beat_store_factory():
    return MemoryBeatRepository


@pytest.fixture
def purchase_store_factory():
    return MemoryPurchaseRepository


@pytest.fixture
def verification_store_factory():
    return MemoryVerificationRepository
