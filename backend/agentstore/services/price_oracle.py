"""
ETH/USD price oracle with a short-lived cache.

Lookup order on every call:
1. cached price younger than the TTL (no network call)
2. fresh price from the spot feed
3. stale cached price, if the feed is down
4. hardcoded fallback price

A feed outage therefore never blocks paid purchases; the price used may be
stale for as long as the outage lasts. The resulting wei amount only gates a
slippage-tolerant comparison in the payment verifier.
"""
import logging
import time
from decimal import Decimal
from typing import Callable, Optional, Union

import httpx

from agentstore.config import settings

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10 ** 18


class PriceFeedError(Exception):
    """The spot feed was unreachable or returned an unusable price."""


class PriceOracle:
    def __init__(
        self,
        feed_url: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        fallback_price: Optional[float] = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.feed_url = feed_url or settings.PRICE_FEED_URL
        self.ttl_seconds = settings.PRICE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.fallback_price = settings.FALLBACK_ETH_PRICE_USD if fallback_price is None else fallback_price
        self.timeout = timeout
        self._clock = clock
        self._price: Optional[float] = None
        self._fetched_at: float = 0.0

    @property
    def cached_price(self) -> Optional[float]:
        return self._price

    def _cache_is_fresh(self) -> bool:
        if self._price is None:
            return False
        return self._clock() - self._fetched_at < self.ttl_seconds

    def clear(self) -> None:
        self._price = None
        self._fetched_at = 0.0

    async def fetch_price(self) -> float:
        """Query the spot feed. Raises PriceFeedError on any failure."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self.feed_url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PriceFeedError(f"Price feed request failed: {e}") from e

        try:
            price = float(data["ethereum"]["usd"])
        except (KeyError, TypeError, ValueError):
            raise PriceFeedError(f"Price feed returned no ETH price: {data!r}")

        if not price > 0:
            raise PriceFeedError(f"Invalid ETH price from oracle: {price}")
        return price

    async def get_price(self) -> float:
        if self._cache_is_fresh():
            return self._price

        try:
            price = await self.fetch_price()
        except PriceFeedError as e:
            if self._price is not None:
                logger.warning(f"{e}; using stale cached ETH price {self._price}")
                return self._price
            logger.warning(f"{e}; using fallback ETH price {self.fallback_price}")
            return self.fallback_price

        self._price = price
        self._fetched_at = self._clock()
        logger.debug(f"Refreshed ETH price: ${price}")
        return price

    async def usd_to_eth(self, usd_amount: Union[Decimal, float, str]) -> int:
        """Convert a USD amount to wei at the current (possibly cached) price."""
        price = await self.get_price()
        eth_amount = float(usd_amount) / price
        return eth_to_wei(f"{eth_amount:.18f}")


def eth_to_wei(eth: Union[Decimal, str]) -> int:
    return int(Decimal(str(eth)).scaleb(18).to_integral_value())


def wei_to_eth(wei: int) -> str:
    """Render wei as an exact ETH decimal string."""
    return format(Decimal(wei).scaleb(-18).normalize(), "f")
