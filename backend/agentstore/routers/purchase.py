from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from agentstore.database import get_db
from agentstore.core.deps import get_price_oracle, get_rpc
from agentstore.schemas.purchase import PurchaseRequest, PurchaseResponse
from agentstore.services.entitlements import purchase_agent
from agentstore.services.payment_verifier import EthereumRpc
from agentstore.services.price_oracle import PriceOracle

router = APIRouter(prefix="/api/purchase", tags=["purchase"])


@router.post("", response_model=PurchaseResponse)
async def purchase(
    body: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    oracle: PriceOracle = Depends(get_price_oracle),
    rpc: EthereumRpc = Depends(get_rpc),
):
    """Buy a paid agent with an ETH transfer to its publisher's payout address."""
    return await purchase_agent(
        db,
        agent_id=body.agent_id,
        wallet_address=body.wallet_address,
        tx_hash=body.tx_hash,
        oracle=oracle,
        rpc=rpc,
    )
