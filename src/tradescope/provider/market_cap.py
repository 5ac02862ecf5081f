"""CoinGecko market cap lookup for quote enrichment.

Exchanges report prices and volumes but not market capitalization, which
the opportunity filters bucket on. This service maps a ccxt symbol's base
currency to a CoinGecko coin id and fetches USD market caps from the free
API with urllib.request (stdlib), off the event loop.

Results are cached in memory with a configurable TTL (default 1 hour)
since market caps move slowly relative to the scan cadence.
"""

import asyncio
import json
import time
import urllib.request
from collections.abc import Callable
from decimal import Decimal

from tradescope.logging import get_logger
from tradescope.models import Quote

logger = get_logger(__name__)

COINGECKO_MARKETS_URL = "https://api.coingecko.com/api/v3/coins/markets"

# Base currency -> CoinGecko coin id
BASE_TO_COINGECKO: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "XRP": "ripple",
    "BNB": "binancecoin",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "POL": "polygon-ecosystem-token",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "FIL": "filecoin",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "SUI": "sui",
    "NEAR": "near",
    "PEPE": "pepe",
    "WIF": "dogwifcoin",
    "TRX": "tron",
}


def base_currency(symbol: str) -> str:
    """Base currency of a ccxt symbol: "PEPE/USDT" and "PEPE/USDT:USDT" -> "PEPE"."""
    return symbol.split("/", 1)[0].upper()


def coingecko_id(symbol: str) -> str | None:
    return BASE_TO_COINGECKO.get(base_currency(symbol))


class MarketCapService:
    """Fetches and caches USD market caps from the CoinGecko free API.

    Args:
        cache_ttl_seconds: How long a fetched market cap stays valid.
        api_key: Optional CoinGecko demo API key for higher rate limits.
        time_fn: Wall clock used for cache expiry (tests inject a fake).
    """

    def __init__(
        self,
        cache_ttl_seconds: int = 3600,
        api_key: str | None = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = cache_ttl_seconds
        self._api_key = api_key
        self._time_fn = time_fn
        self._cache: dict[str, tuple[Decimal, float]] = {}

    def _fetch_market_caps(self, coin_ids: list[str]) -> dict[str, Decimal]:
        """Blocking CoinGecko request. Returns {} on any transport or decode error."""
        if not coin_ids:
            return {}

        url = (
            f"{COINGECKO_MARKETS_URL}"
            f"?vs_currency=usd&ids={','.join(coin_ids)}&per_page=250"
        )
        if self._api_key:
            url += f"&x_cg_demo_api_key={self._api_key}"

        headers = {"Accept": "application/json", "User-Agent": "tradescope/0.1"}
        req = urllib.request.Request(url, headers=headers)

        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                data = json.loads(resp.read())
            return {
                item["id"]: Decimal(str(item.get("market_cap") or 0))
                for item in data
            }
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("coingecko_fetch_error", error=str(e))
            return {}

    async def get_market_caps(self, symbols: list[str]) -> dict[str, Decimal]:
        """Market cap in USD per symbol. Symbols with no known coin are omitted."""
        now = self._time_fn()
        wanted = {s: cg_id for s in symbols if (cg_id := coingecko_id(s)) is not None}
        stale = sorted(
            {
                cg_id
                for cg_id in wanted.values()
                if cg_id not in self._cache or now - self._cache[cg_id][1] >= self._ttl
            }
        )

        if stale:
            fetched = await asyncio.to_thread(self._fetch_market_caps, stale)
            for cg_id, cap in fetched.items():
                self._cache[cg_id] = (cap, now)
            logger.debug("market_caps_refreshed", requested=len(stale), received=len(fetched))

        return {
            symbol: self._cache[cg_id][0]
            for symbol, cg_id in wanted.items()
            if cg_id in self._cache
        }

    async def enrich(self, quotes: list[Quote]) -> list[Quote]:
        """Fill ``market_cap`` on quotes the service knows; others keep their value."""
        if not quotes:
            return quotes
        caps = await self.get_market_caps([q.symbol for q in quotes])
        for quote in quotes:
            cap = caps.get(quote.symbol)
            if cap:
                quote.market_cap = cap
        return quotes
