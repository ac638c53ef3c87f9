import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from agentstore.config import settings
from agentstore.core.deps import get_rpc
from agentstore.main import app
from agentstore.models import Agent, Entitlement, Transaction, ConfirmationStatus, TransactionStatus
from agentstore.services.entitlements import generate_entitlement_token, utcnow
from agentstore.services.payment_sweeper import sweep_preconfirmed_entitlements
from agentstore.services.payment_verifier import RpcError
from conftest import BUYER, PAYOUT, TX_HASH, make_rpc, seed_agent


async def seed_preconfirmed(db, agent, tx_hash=TX_HASH, deadline=timedelta(minutes=5)):
    entitlement = Entitlement(
        agent_id=agent.id,
        wallet_address=BUYER,
        entitlement_token=generate_entitlement_token(),
        pricing_model=agent.pricing_model,
        amount_paid=Decimal("0.005"),
        currency="ETH",
        is_active=True,
        confirmation_status=ConfirmationStatus.preconfirmed,
        verification_deadline=utcnow() + deadline,
    )
    db.add(entitlement)
    await db.flush()
    tx = Transaction(
        entitlement_id=entitlement.id,
        tx_hash=tx_hash,
        from_address=BUYER,
        to_address=PAYOUT,
        amount=Decimal("0.005"),
        currency="ETH",
        platform_fee=Decimal("0.001"),
        publisher_amount=Decimal("0.004"),
        status=TransactionStatus.pending,
        block_number=100,
        confirmations=1,
    )
    db.add(tx)
    agent.download_count = (agent.download_count or 0) + 1
    await db.commit()
    return entitlement, tx


@pytest.mark.asyncio
async def test_sweep_confirms_deep_transactions(db):
    agent = await seed_agent(db)
    entitlement, tx = await seed_preconfirmed(db, agent)

    results = await sweep_preconfirmed_entitlements(db, rpc=make_rpc(receipt_block=100, current_block=104))
    assert results == {"processed": 1, "confirmed": 1, "revoked": 0, "still_pending": 0, "errors": 0}
    assert entitlement.confirmation_status == ConfirmationStatus.confirmed
    assert entitlement.verification_deadline is None
    assert entitlement.is_active is True
    assert tx.status == TransactionStatus.confirmed
    assert tx.confirmations == 4


@pytest.mark.asyncio
async def test_sweep_leaves_shallow_transactions_pending(db):
    agent = await seed_agent(db)
    entitlement, _ = await seed_preconfirmed(db, agent)

    results = await sweep_preconfirmed_entitlements(db, rpc=make_rpc(receipt_block=100, current_block=101))
    assert results["still_pending"] == 1
    assert entitlement.confirmation_status == ConfirmationStatus.preconfirmed


@pytest.mark.asyncio
async def test_sweep_revokes_failed_transactions(db):
    agent = await seed_agent(db)
    entitlement, tx = await seed_preconfirmed(db, agent)

    results = await sweep_preconfirmed_entitlements(db, rpc=make_rpc(receipt_status="0x0"))
    assert results["revoked"] == 1
    assert entitlement.confirmation_status == ConfirmationStatus.revoked
    assert entitlement.is_active is False
    assert tx.status == TransactionStatus.failed
    await db.refresh(agent)
    assert agent.download_count == 0


@pytest.mark.asyncio
async def test_sweep_revokes_after_deadline(db):
    agent = await seed_agent(db)
    entitlement, _ = await seed_preconfirmed(db, agent, deadline=timedelta(seconds=-1))

    results = await sweep_preconfirmed_entitlements(db, rpc=make_rpc(receipt_block=100, current_block=101))
    assert results["revoked"] == 1
    assert entitlement.confirmation_status == ConfirmationStatus.revoked


@pytest.mark.asyncio
async def test_sweep_keeps_entitlement_on_transient_rpc_error(db):
    agent = await seed_agent(db)
    entitlement, tx = await seed_preconfirmed(db, agent, deadline=timedelta(seconds=-1))
    rpc = make_rpc()
    rpc.get_transaction_receipt = AsyncMock(side_effect=RpcError("RPC request failed with HTTP 503"))

    results = await sweep_preconfirmed_entitlements(db, rpc=rpc)
    assert results["errors"] == 1
    assert results["revoked"] == 0
    assert entitlement.confirmation_status == ConfirmationStatus.preconfirmed
    assert entitlement.is_active is True
    assert tx.status == TransactionStatus.pending


@pytest.mark.asyncio
async def test_sweep_ignores_settled_entitlements(db):
    agent = await seed_agent(db)
    entitlement, _ = await seed_preconfirmed(db, agent)
    entitlement.confirmation_status = ConfirmationStatus.confirmed
    await db.commit()
    rpc = make_rpc()

    results = await sweep_preconfirmed_entitlements(db, rpc=rpc)
    assert results["processed"] == 0
    rpc.get_transaction_receipt.assert_not_awaited()


@pytest.mark.asyncio
async def test_cron_endpoint_runs_sweep(session_factory, db):
    agent = await seed_agent(db)
    await seed_preconfirmed(db, agent)
    app.dependency_overrides[get_rpc] = lambda: make_rpc(receipt_block=100, current_block=110)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        r = await client.post("/api/cron/verify-payments")
    assert r.status_code == 200
    assert r.json()["message"] == "Verification complete"
    assert r.json()["results"]["confirmed"] == 1


@pytest.mark.asyncio
async def test_cron_endpoint_with_nothing_pending(session_factory):
    app.dependency_overrides[get_rpc] = lambda: make_rpc()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        r = await client.get("/api/cron/verify-payments")
    assert r.status_code == 200
    assert r.json()["message"] == "No pending verifications"


@pytest.mark.asyncio
async def test_cron_endpoint_requires_secret(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    app.dependency_overrides[get_rpc] = lambda: make_rpc()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.get("/api/cron/verify-payments")
        wrong = await client.get("/api/cron/verify-payments", headers={"Authorization": "Bearer nope"})
        ok = await client.get("/api/cron/verify-payments", headers={"Authorization": "Bearer s3cret"})
    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200
