from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from agentstore.database import get_db
from agentstore.core.deps import get_rpc, require_cron_secret
from agentstore.services.payment_sweeper import sweep_preconfirmed_entitlements
from agentstore.services.payment_verifier import EthereumRpc

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.api_route("/verify-payments", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
async def verify_payments(
    db: AsyncSession = Depends(get_db),
    rpc: EthereumRpc = Depends(get_rpc),
):
    """Confirm or revoke preconfirmed entitlements. For external schedulers."""
    results = await sweep_preconfirmed_entitlements(db, rpc=rpc)
    if not results["processed"]:
        return {"message": "No pending verifications", "processed": 0, "results": results}
    return {"message": "Verification complete", "processed": results["processed"], "results": results}
