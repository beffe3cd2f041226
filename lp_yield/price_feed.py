#!/usr/bin/env python3
"""
Price Feeds — USD price for a token symbol
===========================================

  • DexScreenerPriceFeed — live lookups via the DEXScreener search API
    https://docs.dexscreener.com/api/reference  (300 req/min limit)
  • StaticPriceFeed      — fixed symbol → price table (price files, tests)

Every feed implements ``async fetch_current_price(symbol) -> float`` and
either returns a finite, non-negative price or raises PriceFeedError.
"""

import logging
import math
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from lp_yield.central_config import DexScreenerAPI
from lp_yield.errors import PriceFeedError
from lp_yield.rpc_helpers import RateLimiter, normalize_symbol
from lp_yield.stablecoins import is_usd_stablecoin

logger = logging.getLogger(__name__)


class PriceFeed(Protocol):
    async def fetch_current_price(self, symbol: str) -> float:
        ...


def _checked(symbol: str, price: Any) -> float:
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise PriceFeedError(f"Non-numeric price for {symbol}: {price!r}")
    if not math.isfinite(value) or value < 0:
        raise PriceFeedError(f"Invalid price for {symbol}: {value}")
    return value


class StaticPriceFeed:
    """Prices from a fixed mapping; symbols are matched case-insensitively."""

    def __init__(self, prices: Mapping[str, float]):
        self._prices = {k.strip().upper(): v for k, v in prices.items()}

    async def fetch_current_price(self, symbol: str) -> float:
        key = normalize_symbol(symbol).upper()
        if key not in self._prices:
            if is_usd_stablecoin(key):
                return 1.0
            raise PriceFeedError(f"No price configured for {symbol}")
        return _checked(symbol, self._prices[key])


# Shared across feed instances (module-level singleton)
_dexscreener_limiter = RateLimiter(max_requests=250, period_seconds=60)


class DexScreenerPriceFeed:
    """DEXScreener search: most liquid pair whose base token matches the symbol."""

    def __init__(self, chain: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.chain = chain
        self.client = client
        self.timeout = DexScreenerAPI.TIMEOUT_SECONDS

    async def fetch_current_price(self, symbol: str) -> float:
        normalized = normalize_symbol(symbol)
        if is_usd_stablecoin(normalized):
            return 1.0

        data = await self._search(normalized)
        pair = self._best_pair(data.get("pairs") or [], normalized)
        if pair is None:
            raise PriceFeedError(f"No DEXScreener pair found for {symbol}")
        price = _checked(symbol, pair.get("priceUsd"))
        logger.debug("price %s = %s (pair %s)", symbol, price, pair.get("pairAddress"))
        return price

    async def _search(self, query: str) -> Dict[str, Any]:
        await _dexscreener_limiter.acquire()
        url = DexScreenerAPI.get_search_url(query)
        try:
            if self.client is not None:
                response = await self.client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            raise PriceFeedError(f"DEXScreener request failed: {e.__class__.__name__}") from e
        if response.status_code != 200:
            raise PriceFeedError(f"DEXScreener HTTP {response.status_code} for {query}")
        try:
            return response.json()
        except ValueError as e:
            raise PriceFeedError("DEXScreener returned invalid JSON") from e

    def _best_pair(self, pairs: list, symbol: str) -> Optional[Dict[str, Any]]:
        wanted = symbol.upper()
        candidates = [
            p for p in pairs
            if (p.get("baseToken") or {}).get("symbol", "").upper() == wanted
            and p.get("priceUsd")
            and (self.chain is None or p.get("chainId") == self.chain)
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda p: float((p.get("liquidity") or {}).get("usd", 0) or 0),
        )
