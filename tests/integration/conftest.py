"""
Database fixtures
Repositories run their real SQL against a throwaway SQLite database
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from beatmarket.database.connection import Base
from beatmarket.database.repositories.agent_repository import AgentRepository
from beatmarket.database.repositories.beat_repository import BeatRepository
from beatmarket.database.repositories.purchase_repository import PurchaseRepository
from beatmarket.database.repositories.verification_repository import VerificationRepository


@compiles(JSONB, "sqlite")
def _jsonb_as_json(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'beatmarket.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _register_functions(dbapi_connection, connection_record):
        dbapi_connection.create_function("gen_random_uuid", 0, lambda: uuid.uuid4().hex)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def stored_agent(db_session):
    return await AgentRepository(db_session).create(
        handle="lofi_bot",
        name="Lofi Bot",
        api_token=f"token-{uuid.uuid4().hex}",
        genres=["lofi", "jazz"],
        paypal_email="seller@example.com"
    )


@pytest.fixture
async def stored_beat(db_session, stored_agent):
    return await BeatRepository(db_session).create(
        agent_id=stored_agent.id,
        task_id="task-123",
        title="Night Drive",
        genre="lofi",
        status="complete",
        audio_url="https://cdn.example.com/a.mp3"
    )


@pytest.fixture
def purchase_rows(db_session, stored_beat):
    """Insert purchases of the stored beat"""
    async def create(**overrides):
        values = {
            "beat_id": stored_beat.id,
            "buyer_email": "buyer@example.com",
            "amount": Decimal("4.99"),
            "platform_fee": Decimal("1.00"),
            "seller_share": Decimal("3.99"),
            "seller_paypal": "seller@example.com",
            "paypal_order_id": f"ORDER-{uuid.uuid4().hex[:8]}",
            "paypal_status": "pending",
        }
        values.update(overrides)
        return await PurchaseRepository(db_session).create(**values)

    return create


@pytest.fixture
async def stored_verification(db_session):
    now = datetime.now(timezone.utc)
    return await VerificationRepository(db_session).create(
        email="buyer@example.com",
        code="123456",
        verified=True,
        verified_at=now,
        expires_at=now + timedelta(minutes=10)
    )
