"""
Entitlement reconciliation for paid agents.

A purchase turns a verified payment into two rows: the entitlement granting
access and the transaction record claiming the on-chain hash. The hash is
claimed under a unique constraint after the entitlement is written; losing
that race deletes the entitlement again and reports a replay.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agentstore.config import settings
from agentstore.core.errors import (
    AlreadyPurchasedError,
    ConfigurationError,
    NotFoundError,
    PaymentInvalidError,
    ReplayError,
    ValidationError,
)
from agentstore.models.agent import Agent, PricingModel
from agentstore.models.entitlement import Entitlement, ConfirmationStatus
from agentstore.models.transaction import Transaction, TransactionStatus
from agentstore.schemas.purchase import PurchaseResponse
from agentstore.services.fee_splitter import FeeSplit, calculate_fee_split, ETH_DECIMALS
from agentstore.services.payment_verifier import EthereumRpc, verify_payment
from agentstore.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)

ENTITLEMENT_TOKEN_PREFIX = "ent_"
ENTITLEMENT_TOKEN_BYTES = 32
SUBSCRIPTION_PERIOD = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything here is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def generate_entitlement_token() -> str:
    return ENTITLEMENT_TOKEN_PREFIX + secrets.token_hex(ENTITLEMENT_TOKEN_BYTES)


def entitlement_expiry(pricing_model: PricingModel, now: datetime) -> Optional[datetime]:
    if pricing_model == PricingModel.one_time:
        return None
    return now + SUBSCRIPTION_PERIOD


def verification_deadline(status: ConfirmationStatus, now: datetime) -> Optional[datetime]:
    if status != ConfirmationStatus.preconfirmed:
        return None
    return now + timedelta(seconds=settings.PRECONF_VERIFICATION_DEADLINE_SECONDS)


async def get_published_agent(db: AsyncSession, agent_id: str) -> Agent:
    agent = await db.scalar(
        select(Agent).where(Agent.agent_id == agent_id, Agent.is_published == True)
    )
    if not agent:
        raise NotFoundError("Agent not found", details={"agent_id": agent_id})
    return agent


def require_payout_address(agent: Agent) -> str:
    payout = agent.publisher.payout_address if agent.publisher else None
    if not payout:
        logger.error(f"Publisher payout address missing for agent {agent.agent_id}")
        raise ConfigurationError("Publisher payout address not configured", details={"agent_id": agent.agent_id})
    return payout


async def find_active_entitlement(
    db: AsyncSession,
    agent_pk: int,
    wallet_address: str,
    now: Optional[datetime] = None,
) -> Optional[Entitlement]:
    """Active entitlement for (agent, wallet). With ``now``, expired ones are ignored."""
    query = select(Entitlement).where(
        Entitlement.agent_id == agent_pk,
        Entitlement.wallet_address == wallet_address.lower(),
        Entitlement.is_active == True,
        Entitlement.confirmation_status != ConfirmationStatus.revoked,
    )
    if now is not None:
        query = query.where(or_(Entitlement.expires_at == None, Entitlement.expires_at > now))
    return await db.scalar(query.limit(1))


async def ensure_not_purchased(db: AsyncSession, agent: Agent, wallet_address: str) -> None:
    if await find_active_entitlement(db, agent.id, wallet_address, now=utcnow()):
        raise AlreadyPurchasedError(
            "Agent already purchased by this wallet",
            details={"agent_id": agent.agent_id, "wallet_address": wallet_address.lower()},
        )


async def increment_download_count(db: AsyncSession, agent_pk: int) -> None:
    await db.execute(
        update(Agent).where(Agent.id == agent_pk).values(download_count=Agent.download_count + 1)
    )
    await db.commit()


async def decrement_download_count(db: AsyncSession, agent_pk: int) -> None:
    await db.execute(
        update(Agent)
        .where(Agent.id == agent_pk, Agent.download_count > 0)
        .values(download_count=Agent.download_count - 1)
    )


async def record_purchase(
    db: AsyncSession,
    *,
    agent: Agent,
    wallet_address: str,
    tx_hash: str,
    status: ConfirmationStatus,
    amount: Decimal,
    currency: str,
    fee_split: FeeSplit,
    block_number: Optional[int] = None,
    confirmations: int = 0,
) -> Entitlement:
    """Persist entitlement and transaction; compensate if the hash was already claimed."""
    now = utcnow()
    wallet = wallet_address.lower()
    tx_hash = tx_hash.lower()

    entitlement = Entitlement(
        agent_id=agent.id,
        wallet_address=wallet,
        entitlement_token=generate_entitlement_token(),
        pricing_model=agent.pricing_model,
        amount_paid=amount,
        currency=currency,
        is_active=True,
        confirmation_status=status,
        expires_at=entitlement_expiry(agent.pricing_model, now),
        verification_deadline=verification_deadline(status, now),
    )
    db.add(entitlement)
    await db.commit()
    entitlement_pk = entitlement.id

    db.add(Transaction(
        entitlement_id=entitlement_pk,
        tx_hash=tx_hash,
        from_address=wallet,
        to_address=fee_split.publisher_address.lower(),
        amount=amount,
        currency=currency,
        platform_fee=Decimal(fee_split.platform_amount),
        publisher_amount=Decimal(fee_split.publisher_amount),
        status=TransactionStatus.confirmed if status == ConfirmationStatus.confirmed else TransactionStatus.pending,
        block_number=block_number,
        confirmations=confirmations or 0,
    ))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        await db.execute(delete(Entitlement).where(Entitlement.id == entitlement_pk))
        await db.commit()
        logger.warning(f"Replay rejected: {tx_hash} already backs a purchase; entitlement {entitlement_pk} removed")
        raise ReplayError("Transaction already used for a purchase", details={"tx_hash": tx_hash})

    await increment_download_count(db, agent.id)
    logger.info(
        f"Entitlement {entitlement_pk} granted for {agent.agent_id} to {wallet} "
        f"({status.value}, tx {tx_hash})"
    )
    return entitlement


async def purchase_agent(
    db: AsyncSession,
    agent_id: str,
    wallet_address: str,
    tx_hash: str,
    oracle: PriceOracle,
    rpc: Optional[EthereumRpc] = None,
) -> PurchaseResponse:
    """Grant access to a paid agent against an ETH transfer to its publisher."""
    agent = await get_published_agent(db, agent_id)
    if agent.is_free:
        raise ValidationError("Free agents do not require purchase", details={"agent_id": agent_id})

    await ensure_not_purchased(db, agent, wallet_address)
    payout_address = require_payout_address(agent)

    expected_wei = await oracle.usd_to_eth(agent.price_usd)
    verification = await verify_payment(
        tx_hash=tx_hash,
        expected_from=wallet_address,
        expected_to=payout_address,
        expected_amount_wei=expected_wei,
        slippage_bps=settings.PURCHASE_SLIPPAGE_BPS,
        rpc=rpc,
    )
    if not verification.valid:
        logger.info(f"Purchase of {agent_id} by {wallet_address.lower()} rejected: {verification.error}")
        raise PaymentInvalidError(
            verification.error or "Payment verification failed",
            details={"tx_hash": tx_hash, "status": verification.status.value},
        )

    details = verification.tx_details
    fee_split = calculate_fee_split(
        details.value_eth,
        decimals=ETH_DECIMALS,
        publisher_address=payout_address,
    )
    entitlement = await record_purchase(
        db,
        agent=agent,
        wallet_address=wallet_address,
        tx_hash=tx_hash,
        status=verification.status,
        amount=Decimal(details.value_eth),
        currency="ETH",
        fee_split=fee_split,
        block_number=details.block_number,
        confirmations=details.confirmations,
    )
    return PurchaseResponse(
        entitlement_token=entitlement.entitlement_token,
        confirmation_status=entitlement.confirmation_status,
        expires_at=entitlement.expires_at,
        verification_deadline=entitlement.verification_deadline,
        fee_split=fee_split,
        tx_details=details,
        install=agent.install,
    )
