import json
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from agentstore.database import get_db
from agentstore.services.entitlements import find_active_entitlement, get_published_agent, utcnow
from agentstore.services.settlement import create_payment_required

router = APIRouter(prefix="/api/agents", tags=["agents"])


@router.get("/{agent_id}/access")
async def agent_access(
    agent_id: str,
    x_wallet_address: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Install details for free or already-purchased agents, otherwise a 402 quote."""
    agent = await get_published_agent(db, agent_id)

    if agent.is_free:
        return {
            "access": "granted",
            "agent_id": agent.agent_id,
            "install": agent.install,
            "entitlement": None,
        }

    if not x_wallet_address:
        raise HTTPException(400, "X-Wallet-Address header required for paid agents")

    entitlement = await find_active_entitlement(db, agent.id, x_wallet_address, now=utcnow())
    if entitlement:
        return {
            "access": "granted",
            "agent_id": agent.agent_id,
            "install": agent.install,
            "entitlement": {
                "token": entitlement.entitlement_token,
                "expires_at": entitlement.expires_at.isoformat() if entitlement.expires_at else None,
                "confirmation_status": entitlement.confirmation_status.value,
            },
        }

    payment_required = create_payment_required(agent)
    return JSONResponse(
        status_code=402,
        content={
            "error": "Payment Required",
            "code": "PAYMENT_REQUIRED",
            "payment": payment_required,
        },
        headers={"X-Payment-Required": json.dumps(payment_required)},
    )
