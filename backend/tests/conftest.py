import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "")
os.environ.setdefault("X402_FACILITATOR_URL", "")

import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from agentstore.database import Base, get_db
from agentstore.main import app
from agentstore.models import Agent, AgentType, PricingModel, Publisher

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BUYER = "0x1234567890abcdef1234567890abcdef12345678"
OTHER_BUYER = "0x9999999999999999999999999999999999999999"
PAYOUT = "0xabcdef1234567890abcdef1234567890abcdef12"
TX_HASH = "0x" + "ab" * 32


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_db():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield SessionLocal
    app.dependency_overrides.clear()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def seed_agent(
    db,
    agent_id="acme.research.analyst",
    price_usd=Decimal("10"),
    pricing_model=PricingModel.one_time,
    payout_address=PAYOUT,
    is_published=True,
):
    publisher = await db.get(Publisher, 1)
    if publisher is None:
        publisher = Publisher(id=1, publisher_id="acme", display_name="Acme", payout_address=payout_address)
        db.add(publisher)
        await db.flush()
    agent = Agent(
        agent_id=agent_id,
        publisher_id=publisher.id,
        name="Research Analyst",
        type=AgentType.proprietary if pricing_model != PricingModel.free else AgentType.open,
        pricing_model=pricing_model,
        price_usd=price_usd,
        install={"gateway": {"routing_prefix": agent_id}},
        is_published=is_published,
        download_count=0,
    )
    db.add(agent)
    await db.commit()
    return agent


def make_rpc(
    from_address=BUYER,
    to_address=PAYOUT,
    value_wei=5 * 10 ** 15,
    receipt_block=100,
    current_block=101,
    receipt_status="0x1",
    receipt=True,
):
    """AsyncMock standing in for EthereumRpc."""
    rpc = AsyncMock()
    rpc.get_transaction_receipt = AsyncMock(
        return_value={"status": receipt_status, "blockNumber": hex(receipt_block)} if receipt else None
    )
    rpc.get_transaction = AsyncMock(return_value={
        "from": from_address,
        "to": to_address,
        "value": hex(value_wei),
    })
    rpc.get_block_number = AsyncMock(return_value=current_block)
    return rpc
