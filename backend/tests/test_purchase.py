import pytest
from decimal import Decimal
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from agentstore.core.deps import get_price_oracle, get_rpc
from agentstore.main import app
from agentstore.models import Agent, Entitlement, Transaction, ConfirmationStatus, PricingModel
from agentstore.services.price_oracle import PriceOracle
from conftest import BUYER, OTHER_BUYER, TX_HASH, make_rpc, seed_agent


def install_overrides(rpc):
    oracle = PriceOracle(fallback_price=2000.0)
    oracle.fetch_price = AsyncMock(return_value=2000.0)
    app.dependency_overrides[get_price_oracle] = lambda: oracle
    app.dependency_overrides[get_rpc] = lambda: rpc
    return oracle


async def post_purchase(agent_id="acme.research.analyst", wallet=BUYER, tx_hash=TX_HASH):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.post("/api/purchase", json={
            "agent_id": agent_id,
            "wallet_address": wallet,
            "tx_hash": tx_hash,
        })


async def all_rows(session_factory, model):
    async with session_factory() as s:
        return (await s.execute(select(model))).scalars().all()


@pytest.mark.asyncio
async def test_purchase_grants_preconfirmed_entitlement(session_factory, db):
    await seed_agent(db)
    install_overrides(make_rpc(receipt_block=100, current_block=101))

    r = await post_purchase()
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["entitlement_token"].startswith("ent_")
    assert len(data["entitlement_token"]) == 68
    assert data["confirmation_status"] == "preconfirmed"
    assert data["verification_deadline"] is not None
    assert data["expires_at"] is None
    assert data["fee_split"]["platform_amount"] == "0.001000000000000000"
    assert data["fee_split"]["publisher_amount"] == "0.004000000000000000"
    assert data["tx_details"]["confirmations"] == 1
    assert data["install"] == {"gateway": {"routing_prefix": "acme.research.analyst"}}

    entitlements = await all_rows(session_factory, Entitlement)
    assert len(entitlements) == 1
    assert entitlements[0].wallet_address == BUYER
    assert entitlements[0].currency == "ETH"

    txs = await all_rows(session_factory, Transaction)
    assert len(txs) == 1
    assert txs[0].tx_hash == TX_HASH
    assert txs[0].entitlement_id == entitlements[0].id
    assert txs[0].platform_fee + txs[0].publisher_amount == txs[0].amount
    assert txs[0].amount == Decimal("0.005")

    agents = await all_rows(session_factory, Agent)
    assert agents[0].download_count == 1


@pytest.mark.asyncio
async def test_deep_payment_is_confirmed_immediately(session_factory, db):
    await seed_agent(db)
    install_overrides(make_rpc(receipt_block=100, current_block=110))

    r = await post_purchase()
    assert r.status_code == 200
    assert r.json()["confirmation_status"] == "confirmed"
    assert r.json()["verification_deadline"] is None


@pytest.mark.asyncio
async def test_subscription_expires_in_thirty_days(session_factory, db):
    await seed_agent(db, pricing_model=PricingModel.subscription)
    install_overrides(make_rpc())

    r = await post_purchase()
    assert r.status_code == 200
    assert r.json()["expires_at"] is not None


@pytest.mark.asyncio
async def test_underpayment_rejected_without_rows(session_factory, db):
    await seed_agent(db)
    install_overrides(make_rpc(value_wei=4 * 10 ** 15))

    r = await post_purchase()
    assert r.status_code == 402
    detail = r.json()["detail"]
    assert detail["code"] == "PAYMENT_INVALID"
    assert detail["error"].startswith("Insufficient payment")
    assert await all_rows(session_factory, Entitlement) == []
    assert await all_rows(session_factory, Transaction) == []


@pytest.mark.asyncio
async def test_payment_within_slippage_accepted(session_factory, db):
    await seed_agent(db)
    install_overrides(make_rpc(value_wei=4_800_000_000_000_000))

    r = await post_purchase()
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_second_purchase_by_same_wallet_conflicts(session_factory, db):
    await seed_agent(db)
    rpc = make_rpc()
    install_overrides(rpc)

    assert (await post_purchase()).status_code == 200
    r = await post_purchase(tx_hash="0x" + "cd" * 32)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "ALREADY_PURCHASED"
    assert rpc.get_transaction_receipt.await_count == 1


@pytest.mark.asyncio
async def test_replayed_hash_rejected_and_compensated(session_factory, db):
    await seed_agent(db)
    await seed_agent(db, agent_id="acme.research.writer")
    install_overrides(make_rpc())

    first = await post_purchase()
    assert first.status_code == 200

    r = await post_purchase(agent_id="acme.research.writer")
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "TRANSACTION_REPLAY"

    entitlements = await all_rows(session_factory, Entitlement)
    assert len(entitlements) == 1
    assert entitlements[0].entitlement_token == first.json()["entitlement_token"]
    assert entitlements[0].confirmation_status == ConfirmationStatus.preconfirmed
    assert len(await all_rows(session_factory, Transaction)) == 1

    counts = {a.agent_id: a.download_count for a in await all_rows(session_factory, Agent)}
    assert counts == {"acme.research.analyst": 1, "acme.research.writer": 0}


@pytest.mark.asyncio
async def test_free_agent_cannot_be_purchased(session_factory, db):
    await seed_agent(db, pricing_model=PricingModel.free, price_usd=Decimal("0"))
    install_overrides(make_rpc())

    r = await post_purchase()
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_agent_not_found(session_factory, db):
    install_overrides(make_rpc())

    r = await post_purchase(agent_id="nobody.nothing")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_unpublished_agent_not_found(session_factory, db):
    await seed_agent(db, is_published=False)
    install_overrides(make_rpc())

    r = await post_purchase()
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_missing_payout_address_is_configuration_error(session_factory, db):
    await seed_agent(db, payout_address=None)
    rpc = make_rpc()
    install_overrides(rpc)

    r = await post_purchase()
    assert r.status_code == 500
    assert r.json()["detail"]["code"] == "CONFIGURATION_ERROR"
    rpc.get_transaction_receipt.assert_not_awaited()


@pytest.mark.asyncio
async def test_payment_from_other_wallet_rejected(session_factory, db):
    await seed_agent(db)
    install_overrides(make_rpc(from_address=OTHER_BUYER))

    r = await post_purchase()
    assert r.status_code == 402
    assert r.json()["detail"]["error"].startswith("Sender mismatch")


@pytest.mark.asyncio
async def test_malformed_request_rejected(session_factory):
    install_overrides(make_rpc())

    r = await post_purchase(tx_hash="0x1234")
    assert r.status_code == 422
