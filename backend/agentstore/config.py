from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = ""

    # Ethereum mainnet via mev-commit (receipts exist as soon as a preconfirmation does)
    ETH_RPC_URL: str = "https://fastrpc.mev-commit.xyz"
    RPC_TIMEOUT_SECONDS: float = 30.0
    MIN_CONFIRMATIONS: int = 2
    PURCHASE_SLIPPAGE_BPS: int = 500

    # ETH/USD spot price
    PRICE_FEED_URL: str = "https://api.coingecko.com/api/v3/simple/price?ids=ethereum&vs_currencies=usd"
    PRICE_CACHE_TTL_SECONDS: float = 60.0
    FALLBACK_ETH_PRICE_USD: float = 2000.0

    # Revenue split
    PLATFORM_FEE_PERCENT: int = 20
    PLATFORM_WALLET_ADDRESS: str = "0x71483B877c40eb2BF99230176947F5ec1c2351cb"

    # x402 gasless USDC settlement
    X402_FACILITATOR_URL: Optional[str] = None
    FACILITATOR_TIMEOUT_SECONDS: float = 30.0
    USDC_ADDRESS: str = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
    CHAIN_ID: int = 1
    PAYMENT_REQUEST_TTL_MINUTES: int = 15

    # Preconfirmed entitlements must reach finality within this window
    PRECONF_VERIFICATION_DEADLINE_SECONDS: int = 300
    REVERIFY_INTERVAL_SECONDS: int = 30
    CRON_SECRET: str = ""

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator('X402_FACILITATOR_URL', mode='before')
    @classmethod
    def blank_facilitator_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

settings = Settings()
