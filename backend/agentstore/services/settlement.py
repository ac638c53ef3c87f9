"""
Gasless USDC settlement through an x402 facilitator.

The payer signs an EIP-3009 ``transferWithAuthorization`` off-chain. We check
the terms and the signature locally, then hand the authorization to the
facilitator: ``/verify`` first, ``/settle`` second. The facilitator's relay
wallet submits it to the USDC contract and returns a settlement proof.

There is no local settlement fallback: without a facilitator the path is
unavailable.
"""
import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data
from sqlalchemy.ext.asyncio import AsyncSession

from agentstore.config import settings
from agentstore.core.errors import (
    ConfigurationError,
    PaymentInvalidError,
    UpstreamError,
    ValidationError,
)
from agentstore.models.agent import Agent
from agentstore.models.entitlement import ConfirmationStatus
from agentstore.schemas.payment import (
    PaymentProof,
    PaymentSubmissionResponse,
    PaymentTerms,
    TransferAuthorization,
)
from agentstore.services.entitlements import (
    as_utc,
    ensure_not_purchased,
    get_published_agent,
    record_purchase,
    require_payout_address,
    utcnow,
)
from agentstore.services.fee_splitter import (
    USDC_DECIMALS,
    calculate_fee_split,
    to_minor_units,
)

logger = logging.getLogger(__name__)

X402_VERSION = "1"

USDC_DOMAIN_NAME = "USD Coin"
USDC_DOMAIN_VERSION = "2"

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


class FacilitatorClient:
    """HTTP client for an x402 facilitator's ``/verify`` and ``/settle`` endpoints."""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = settings.FACILITATOR_TIMEOUT_SECONDS if timeout is None else timeout

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Facilitator {path} unreachable: {e}")
            raise UpstreamError("Payment processing failed. Please try again.", details=str(e))

    async def verify(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._post("/verify", payload)
        if not resp.is_success:
            logger.warning(f"Facilitator rejected authorization ({resp.status_code}): {resp.text}")
            raise UpstreamError("Facilitator rejected authorization", details=resp.text)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("isValid") is False:
            reason = body.get("invalidReason") or "unknown"
            logger.warning(f"Facilitator rejected authorization: {reason}")
            raise UpstreamError("Facilitator rejected authorization", details=reason)
        return body

    async def settle(self, payload: Dict[str, Any]) -> PaymentProof:
        resp = await self._post("/settle", payload)
        if not resp.is_success:
            logger.error(f"Facilitator settlement failed ({resp.status_code}): {resp.text}")
            raise UpstreamError("Settlement failed", details=resp.text)
        try:
            return PaymentProof.model_validate(resp.json())
        except ValueError as e:
            logger.error(f"Facilitator returned an unreadable settlement proof: {e}")
            raise UpstreamError("Settlement failed", details="Invalid settlement proof")


def build_authorization_typed_data(
    authorization: TransferAuthorization,
    chain_id: Optional[int] = None,
    token_address: Optional[str] = None,
) -> Dict[str, Any]:
    """EIP-712 payload the payer signed for ``transferWithAuthorization``."""
    return {
        "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": USDC_DOMAIN_NAME,
            "version": USDC_DOMAIN_VERSION,
            "chainId": chain_id or settings.CHAIN_ID,
            "verifyingContract": (token_address or settings.USDC_ADDRESS).lower(),
        },
        "message": {
            "from": authorization.from_address.lower(),
            "to": authorization.to.lower(),
            "value": int(authorization.value),
            "validAfter": int(authorization.validAfter),
            "validBefore": int(authorization.validBefore),
            "nonce": bytes.fromhex(authorization.nonce.removeprefix("0x")),
        },
    }


def recover_authorization_signer(authorization: TransferAuthorization) -> str:
    signable = encode_typed_data(full_message=build_authorization_typed_data(authorization))
    return Account.recover_message(
        signable,
        vrs=(authorization.v, authorization.r, authorization.s),
    )


def check_authorization(
    authorization: TransferAuthorization,
    wallet_address: str,
    payout_address: str,
    expected_micro: int,
    now: datetime,
) -> None:
    if authorization.from_address.lower() != wallet_address.lower():
        raise PaymentInvalidError(
            f"Authorization payer mismatch: expected {wallet_address}, got {authorization.from_address}"
        )
    if authorization.to.lower() != payout_address.lower():
        raise PaymentInvalidError(
            f"Recipient mismatch: expected {payout_address}, got {authorization.to}"
        )
    if int(authorization.value) != expected_micro:
        raise PaymentInvalidError(
            f"Authorization value mismatch: expected {expected_micro}, got {authorization.value}"
        )
    if int(authorization.validBefore) <= int(now.timestamp()):
        raise PaymentInvalidError("Authorization has expired")

    try:
        signer = recover_authorization_signer(authorization)
    except Exception as e:
        raise PaymentInvalidError("Invalid authorization signature", details=str(e))
    if signer.lower() != authorization.from_address.lower():
        raise PaymentInvalidError(
            "Authorization signature does not match payer",
            details={"recovered": signer},
        )


def create_payment_required(agent: Agent, facilitator_url: Optional[str] = None) -> Dict[str, Any]:
    """x402 quote returned with a 402 for a paid agent."""
    pay_to = agent.publisher.payout_address if agent.publisher else None
    if not pay_to:
        raise ConfigurationError("Publisher payout address not configured", details={"agent_id": agent.agent_id})
    fee_split = calculate_fee_split(agent.price_usd, publisher_address=pay_to)
    amount = Decimal(str(agent.price_usd)).quantize(Decimal("0.01"))

    return {
        "amount": str(amount),
        "currency": "USDC",
        "payTo": pay_to,
        "resource": {
            "type": "agent",
            "agent_id": agent.agent_id,
            "description": agent.name,
        },
        "x402": {
            "version": X402_VERSION,
            "chain_id": settings.CHAIN_ID,
            "token": settings.USDC_ADDRESS,
            "facilitator": facilitator_url or settings.X402_FACILITATOR_URL or "",
            "domain": {
                "name": USDC_DOMAIN_NAME,
                "version": USDC_DOMAIN_VERSION,
                "chainId": settings.CHAIN_ID,
                "verifyingContract": settings.USDC_ADDRESS,
            },
        },
        "nonce": secrets.token_hex(16),
        "expires_at": (utcnow() + timedelta(minutes=settings.PAYMENT_REQUEST_TTL_MINUTES)).isoformat(),
        "fee_split": fee_split.model_dump(),
    }


async def submit_signed_payment(
    db: AsyncSession,
    agent_id: str,
    wallet_address: str,
    payment_required: PaymentTerms,
    authorization: TransferAuthorization,
    facilitator: Optional[FacilitatorClient],
) -> PaymentSubmissionResponse:
    if facilitator is None:
        raise ConfigurationError(
            "Payment processing is not available. Facilitator not configured.",
            status_code=503,
        )

    now = utcnow()
    if as_utc(payment_required.expires_at) < now:
        raise ValidationError("Payment request has expired. Please request a new one.")

    agent = await get_published_agent(db, agent_id)
    if agent.is_free:
        raise ValidationError("Free agents do not require purchase", details={"agent_id": agent_id})

    expected_micro = to_minor_units(agent.price_usd, USDC_DECIMALS)
    if to_minor_units(payment_required.amount, USDC_DECIMALS) != expected_micro:
        raise ValidationError(
            "Payment amount mismatch",
            details={"expected": str(agent.price_usd), "submitted": payment_required.amount},
        )

    await ensure_not_purchased(db, agent, wallet_address)
    payout_address = require_payout_address(agent)
    check_authorization(authorization, wallet_address, payout_address, expected_micro, now)

    fee_split = calculate_fee_split(agent.price_usd, publisher_address=payout_address)
    payload = {
        "authorization": authorization.model_dump(by_alias=True),
        "payment_required": payment_required.model_dump(mode="json"),
        "payer": wallet_address,
        "fee_split": fee_split.model_dump(),
    }

    await facilitator.verify(payload)
    proof = await facilitator.settle(payload)
    logger.info(f"Facilitator settled {proof.tx_hash} for {agent_id} ({proof.status})")

    status = ConfirmationStatus.confirmed if proof.status == "confirmed" else ConfirmationStatus.preconfirmed
    entitlement = await record_purchase(
        db,
        agent=agent,
        wallet_address=wallet_address,
        tx_hash=proof.tx_hash,
        status=status,
        amount=Decimal(str(agent.price_usd)),
        currency="USDC",
        fee_split=fee_split,
        block_number=proof.block_number,
        confirmations=proof.confirmations,
    )
    return PaymentSubmissionResponse(
        entitlement_token=entitlement.entitlement_token,
        confirmation_status=entitlement.confirmation_status,
        proof=proof,
        fee_split=fee_split,
        install=agent.install,
    )
