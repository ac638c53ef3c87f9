from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from agentstore.database import get_db
from agentstore.core.deps import get_facilitator
from agentstore.schemas.payment import PaymentSubmission, PaymentSubmissionResponse
from agentstore.services.settlement import FacilitatorClient, submit_signed_payment

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/submit", response_model=PaymentSubmissionResponse)
async def submit_payment(
    body: PaymentSubmission,
    db: AsyncSession = Depends(get_db),
    facilitator: Optional[FacilitatorClient] = Depends(get_facilitator),
):
    """Settle a signed EIP-3009 transferWithAuthorization through the facilitator.

    1. Payer signs transferWithAuthorization (gasless EIP-712 typed data)
    2. Signed authorization is posted here
    3. Facilitator /verify, then /settle submits it to the USDC contract
    4. Entitlement is granted from the settlement proof
    """
    return await submit_signed_payment(
        db,
        agent_id=body.agent_id,
        wallet_address=body.wallet_address,
        payment_required=body.payment_required,
        authorization=body.authorization,
        facilitator=facilitator,
    )
