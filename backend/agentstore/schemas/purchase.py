from datetime import datetime
from typing import Optional, Any
from pydantic import BaseModel, Field
from agentstore.models.entitlement import ConfirmationStatus
from agentstore.services.fee_splitter import FeeSplit
from agentstore.services.payment_verifier import TxDetails

WALLET_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"

class PurchaseRequest(BaseModel):
    agent_id: str = Field(min_length=1, max_length=200)
    wallet_address: str = Field(pattern=WALLET_ADDRESS_PATTERN)
    tx_hash: str = Field(pattern=TX_HASH_PATTERN)

class PurchaseResponse(BaseModel):
    success: bool = True
    entitlement_token: str
    confirmation_status: ConfirmationStatus
    expires_at: Optional[datetime] = None
    verification_deadline: Optional[datetime] = None
    fee_split: FeeSplit
    tx_details: Optional[TxDetails] = None
    install: Optional[Any] = None
