import secrets
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from agentstore.config import settings
from agentstore.services.payment_verifier import EthereumRpc
from agentstore.services.price_oracle import PriceOracle
from agentstore.services.settlement import FacilitatorClient

bearer_optional = HTTPBearer(auto_error=False)

def get_price_oracle(request: Request) -> PriceOracle:
    oracle = getattr(request.app.state, "price_oracle", None)
    if oracle is None:
        oracle = PriceOracle()
        request.app.state.price_oracle = oracle
    return oracle

def get_rpc() -> EthereumRpc:
    return EthereumRpc()

def get_facilitator() -> Optional[FacilitatorClient]:
    if not settings.X402_FACILITATOR_URL:
        return None
    return FacilitatorClient(settings.X402_FACILITATOR_URL)

async def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_optional),
) -> None:
    if not settings.CRON_SECRET:
        return
    if not credentials or not secrets.compare_digest(credentials.credentials, settings.CRON_SECRET):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
