from datetime import datetime
from typing import Optional, Any, Literal
from pydantic import BaseModel, ConfigDict, Field
from agentstore.models.entitlement import ConfirmationStatus
from agentstore.schemas.purchase import WALLET_ADDRESS_PATTERN
from agentstore.services.fee_splitter import FeeSplit

class PaymentTerms(BaseModel):
    """The subset of a 402 quote the payer echoes back."""
    amount: str
    currency: Literal["USDC"]
    payTo: str = Field(pattern=WALLET_ADDRESS_PATTERN)
    nonce: str
    expires_at: datetime

class TransferAuthorization(BaseModel):
    """EIP-3009 transferWithAuthorization parameters plus the payer's signature."""
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="from", pattern=WALLET_ADDRESS_PATTERN)
    to: str = Field(pattern=WALLET_ADDRESS_PATTERN)
    value: str = Field(pattern=r"^\d+$")
    validAfter: str = Field(pattern=r"^\d+$")
    validBefore: str = Field(pattern=r"^\d+$")
    nonce: str = Field(pattern=r"^0x[a-fA-F0-9]{64}$")
    v: int
    r: str = Field(pattern=r"^0x[a-fA-F0-9]{1,64}$")
    s: str = Field(pattern=r"^0x[a-fA-F0-9]{1,64}$")

class PaymentSubmission(BaseModel):
    agent_id: str = Field(min_length=1, max_length=200)
    wallet_address: str = Field(pattern=WALLET_ADDRESS_PATTERN)
    payment_required: PaymentTerms
    authorization: TransferAuthorization

class PaymentProof(BaseModel):
    """Settlement receipt returned by the facilitator's /settle call."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tx_hash: str = Field(min_length=1)
    block_number: Optional[int] = None
    amount: Optional[str] = None
    currency: str = "USDC"
    from_address: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    facilitator_signature: Optional[str] = None
    status: Optional[str] = None
    confirmations: int = 0
    timestamp: Optional[str] = None

class PaymentSubmissionResponse(BaseModel):
    success: bool = True
    status: str = "processed"
    entitlement_token: str
    confirmation_status: ConfirmationStatus
    proof: PaymentProof
    fee_split: FeeSplit
    install: Optional[Any] = None
