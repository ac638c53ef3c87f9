"""
On-chain ETH payment verification.

Talks JSON-RPC to the mev-commit fast RPC endpoint. That endpoint returns a
receipt as soon as a preconfirmation exists, so a missing receipt means the
transaction is unknown rather than pending.
"""
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from agentstore.config import settings
from agentstore.models.entitlement import ConfirmationStatus
from agentstore.services.price_oracle import wei_to_eth

logger = logging.getLogger(__name__)

RECEIPT_STATUS_SUCCESS = "0x1"

# Background re-verification keeps an entitlement preconfirmed when the RPC
# call itself fails. Only an explicit on-chain failure revokes it.
TRANSIENT_ERROR_STATUS = ConfirmationStatus.preconfirmed


class RpcError(Exception):
    pass


class TxDetails(BaseModel):
    from_address: str
    to_address: Optional[str] = None
    value: int
    value_eth: str
    block_number: int
    confirmations: int


class PaymentVerificationResult(BaseModel):
    valid: bool
    status: ConfirmationStatus
    error: Optional[str] = None
    tx_details: Optional[TxDetails] = None


class FinalConfirmation(BaseModel):
    status: ConfirmationStatus
    block_number: Optional[int] = None
    confirmations: Optional[int] = None
    error: Optional[str] = None


def _revoked(error: str) -> PaymentVerificationResult:
    return PaymentVerificationResult(valid=False, status=ConfirmationStatus.revoked, error=error)


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class EthereumRpc:
    """Minimal async JSON-RPC client for the calls the verifier needs."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or settings.ETH_RPC_URL
        self.timeout = settings.RPC_TIMEOUT_SECONDS if timeout is None else timeout
        self._request_id = 0

    async def call(self, method: str, params: list) -> Any:
        self._request_id += 1
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params,
                    "id": self._request_id,
                },
            )
        if resp.status_code != 200:
            raise RpcError(f"RPC request failed with HTTP {resp.status_code}")

        data = resp.json()
        if data.get("error"):
            raise RpcError(f"RPC error: {data['error']}")
        return data.get("result")

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def get_block_number(self) -> int:
        return _hex_to_int(await self.call("eth_blockNumber", []))


async def _confirmation_depth(rpc: EthereumRpc, receipt: dict) -> tuple:
    receipt_block = _hex_to_int(receipt["blockNumber"])
    current_block = await rpc.get_block_number()
    # a reorg can briefly put the receipt ahead of the reported head
    return receipt_block, max(current_block - receipt_block, 0)


def _status_for_depth(confirmations: int, min_confirmations: int) -> ConfirmationStatus:
    if confirmations >= min_confirmations:
        return ConfirmationStatus.confirmed
    return ConfirmationStatus.preconfirmed


def minimum_acceptable_amount(expected_amount_wei: int, slippage_bps: int) -> int:
    """Lower bound for the paid value; slippage never raises the upper bound."""
    return expected_amount_wei - (expected_amount_wei * slippage_bps) // 10000


async def verify_payment(
    tx_hash: str,
    expected_from: str,
    expected_to: str,
    expected_amount_wei: int,
    slippage_bps: int = 100,
    rpc: Optional[EthereumRpc] = None,
    min_confirmations: Optional[int] = None,
) -> PaymentVerificationResult:
    rpc = rpc or EthereumRpc()
    min_confirmations = settings.MIN_CONFIRMATIONS if min_confirmations is None else min_confirmations

    try:
        receipt = await rpc.get_transaction_receipt(tx_hash)
        if not receipt:
            return _revoked("Transaction not found")

        if receipt.get("status") != RECEIPT_STATUS_SUCCESS:
            return _revoked("Transaction failed on-chain")

        tx = await rpc.get_transaction(tx_hash)
        if not tx:
            return _revoked("Transaction not found")

        tx_from = tx.get("from") or ""
        if tx_from.lower() != expected_from.lower():
            return _revoked(f"Sender mismatch: expected {expected_from}, got {tx_from}")

        tx_to = tx.get("to")
        if not tx_to or tx_to.lower() != expected_to.lower():
            return _revoked(f"Recipient mismatch: expected {expected_to}, got {tx_to}")

        value = _hex_to_int(tx.get("value", "0x0"))
        min_amount = minimum_acceptable_amount(expected_amount_wei, slippage_bps)
        if value < min_amount:
            return _revoked(
                f"Insufficient payment: expected {wei_to_eth(expected_amount_wei)} ETH, "
                f"got {wei_to_eth(value)} ETH"
            )
        if value > expected_amount_wei:
            logger.info(
                f"Overpayment on {tx_hash}: expected {wei_to_eth(expected_amount_wei)} ETH, "
                f"got {wei_to_eth(value)} ETH"
            )

        block_number, confirmations = await _confirmation_depth(rpc, receipt)
        return PaymentVerificationResult(
            valid=True,
            status=_status_for_depth(confirmations, min_confirmations),
            tx_details=TxDetails(
                from_address=tx_from,
                to_address=tx_to,
                value=value,
                value_eth=wei_to_eth(value),
                block_number=block_number,
                confirmations=confirmations,
            ),
        )
    except Exception as e:
        logger.error(f"Payment verification error for {tx_hash}: {e}")
        return _revoked(str(e) or "Unknown verification error")


async def verify_final_confirmation(
    tx_hash: str,
    rpc: Optional[EthereumRpc] = None,
    min_confirmations: Optional[int] = None,
) -> FinalConfirmation:
    """Re-check a previously preconfirmed transaction for finality."""
    rpc = rpc or EthereumRpc()
    min_confirmations = settings.MIN_CONFIRMATIONS if min_confirmations is None else min_confirmations

    try:
        receipt = await rpc.get_transaction_receipt(tx_hash)
        if not receipt:
            return FinalConfirmation(status=ConfirmationStatus.revoked, error="Transaction not found")

        if receipt.get("status") != RECEIPT_STATUS_SUCCESS:
            return FinalConfirmation(status=ConfirmationStatus.revoked, error="Transaction failed on-chain")

        block_number, confirmations = await _confirmation_depth(rpc, receipt)
        return FinalConfirmation(
            status=_status_for_depth(confirmations, min_confirmations),
            block_number=block_number,
            confirmations=confirmations,
        )
    except Exception as e:
        logger.warning(f"Re-verification of {tx_hash} failed, keeping {TRANSIENT_ERROR_STATUS.value}: {e}")
        return FinalConfirmation(status=TRANSIENT_ERROR_STATUS, error=str(e) or "Unknown verification error")
