"""
Platform / publisher revenue split.

All arithmetic happens on integer minor units of the payment currency
(micro-USDC, wei) so the two parts always add back to the paid amount.
The publisher share is the remainder, never rounded on its own.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union
from pydantic import BaseModel
from agentstore.config import settings
from agentstore.core.errors import ValidationError

USDC_DECIMALS = 6
ETH_DECIMALS = 18

CURRENCY_DECIMALS = {
    "USDC": USDC_DECIMALS,
    "ETH": ETH_DECIMALS,
}

Amount = Union[Decimal, int, float, str]


class FeeSplit(BaseModel):
    platform_address: str
    platform_amount: str
    platform_percent: int
    publisher_address: str
    publisher_amount: str
    publisher_percent: int


def to_minor_units(amount: Amount, decimals: int) -> int:
    """Convert a decimal amount to integer minor units, rounding half-up past ``decimals``."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    scaled = value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def from_minor_units(minor: int, decimals: int) -> str:
    """Render integer minor units as a fixed-precision decimal string."""
    quantum = Decimal(1).scaleb(-decimals)
    return format(Decimal(minor).scaleb(-decimals).quantize(quantum), "f")


def split_minor_units(total_minor: int, platform_percent: int) -> tuple:
    """Return ``(platform_minor, publisher_minor)`` for an integer total."""
    if total_minor < 0:
        raise ValidationError("Amount must not be negative")
    if not 0 <= platform_percent <= 100:
        raise ValidationError(f"Platform percent must be within 0..100, got {platform_percent}")
    # round-half-up of total * pct / 100 without leaving integers
    platform_minor = (total_minor * platform_percent * 2 + 100) // 200
    return platform_minor, total_minor - platform_minor


def calculate_fee_split(
    total_amount: Amount,
    platform_percent: Optional[int] = None,
    decimals: int = USDC_DECIMALS,
    platform_address: Optional[str] = None,
    publisher_address: str = "",
) -> FeeSplit:
    percent = settings.PLATFORM_FEE_PERCENT if platform_percent is None else platform_percent
    total_minor = to_minor_units(total_amount, decimals)
    platform_minor, publisher_minor = split_minor_units(total_minor, percent)
    return FeeSplit(
        platform_address=platform_address if platform_address is not None else settings.PLATFORM_WALLET_ADDRESS,
        platform_amount=from_minor_units(platform_minor, decimals),
        platform_percent=percent,
        publisher_address=publisher_address,
        publisher_amount=from_minor_units(publisher_minor, decimals),
        publisher_percent=100 - percent,
    )
