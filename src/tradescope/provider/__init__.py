"""Quote provider layer -- market data via ccxt, throttled by request budgets."""

from tradescope.provider.ccxt_provider import CcxtQuoteProvider
from tradescope.provider.client import PriceHistoryRequest, QuoteProvider
from tradescope.provider.market_cap import MarketCapService
from tradescope.provider.rate_limiter import ApiRateLimiter, RateLimiter, RateLimitStatus

__all__ = [
    "ApiRateLimiter",
    "CcxtQuoteProvider",
    "MarketCapService",
    "PriceHistoryRequest",
    "QuoteProvider",
    "RateLimitStatus",
    "RateLimiter",
]
