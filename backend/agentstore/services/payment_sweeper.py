import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agentstore.database import AsyncSessionLocal
from agentstore.models.entitlement import Entitlement, ConfirmationStatus
from agentstore.models.transaction import Transaction, TransactionStatus
from agentstore.services.entitlements import as_utc, decrement_download_count, utcnow
from agentstore.services.payment_verifier import EthereumRpc, verify_final_confirmation

logger = logging.getLogger(__name__)


def _revoke(entitlement: Entitlement, tx: Transaction) -> None:
    entitlement.confirmation_status = ConfirmationStatus.revoked
    entitlement.is_active = False
    entitlement.verification_deadline = None
    tx.status = TransactionStatus.failed


async def sweep_preconfirmed_entitlements(
    db: AsyncSession,
    rpc: Optional[EthereumRpc] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Promote or revoke every preconfirmed entitlement based on its transaction's finality.

    Entitlements whose re-check failed for transient reasons are left alone.
    """
    now = now or utcnow()
    rpc = rpc or EthereumRpc()
    rows = (await db.execute(
        select(Entitlement, Transaction)
        .join(Transaction, Transaction.entitlement_id == Entitlement.id, isouter=True)
        .where(Entitlement.confirmation_status == ConfirmationStatus.preconfirmed)
        .order_by(Entitlement.id)
    )).all()

    results = {"processed": 0, "confirmed": 0, "revoked": 0, "still_pending": 0, "errors": 0}
    seen = set()
    for entitlement, tx in rows:
        if entitlement.id in seen:
            continue
        seen.add(entitlement.id)
        results["processed"] += 1

        if tx is None or not tx.tx_hash:
            logger.error(f"No transaction found for entitlement {entitlement.id}")
            results["errors"] += 1
            continue

        verification = await verify_final_confirmation(tx.tx_hash, rpc=rpc)

        if verification.error and verification.status == ConfirmationStatus.preconfirmed:
            results["errors"] += 1
            continue

        if verification.status == ConfirmationStatus.confirmed:
            entitlement.confirmation_status = ConfirmationStatus.confirmed
            entitlement.verification_deadline = None
            tx.status = TransactionStatus.confirmed
            tx.block_number = verification.block_number
            tx.confirmations = verification.confirmations
            results["confirmed"] += 1
            logger.info(f"Confirmed entitlement {entitlement.id} (tx: {tx.tx_hash})")

        elif verification.status == ConfirmationStatus.revoked:
            _revoke(entitlement, tx)
            await decrement_download_count(db, entitlement.agent_id)
            results["revoked"] += 1
            logger.info(f"Revoked entitlement {entitlement.id} (tx: {tx.tx_hash}) - {verification.error}")

        else:
            deadline = as_utc(entitlement.verification_deadline)
            if deadline is not None and deadline <= now:
                _revoke(entitlement, tx)
                await decrement_download_count(db, entitlement.agent_id)
                results["revoked"] += 1
                logger.info(f"Revoked entitlement {entitlement.id} (tx: {tx.tx_hash}) - deadline exceeded")
            else:
                results["still_pending"] += 1

    await db.commit()
    return results


async def run_payment_sweep():
    """Scheduler entry point; owns its own session."""
    async with AsyncSessionLocal() as db:
        results = await sweep_preconfirmed_entitlements(db)
    if results["processed"]:
        logger.info(f"Payment sweep: {results}")
