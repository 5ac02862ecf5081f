"""Shared market data models.

CRITICAL: All monetary values use Decimal. Never use float for prices.
Timestamps are timezone-aware datetimes; the storage layer converts them
to Unix milliseconds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum


class NewsRating(IntEnum):
    """News sentiment rating. The ordinal feeds opportunity scoring."""

    NONE = 0
    BAD = 1
    OK = 2
    GOOD = 3
    GREAT = 4
    AMAZING = 5


class OpportunityType(str, Enum):
    """Kind of trading opportunity detected by the scanner."""

    NONE = "none"
    BREAKOUT_UP = "breakout_up"
    BREAKOUT_DOWN = "breakout_down"
    VOLUME_SPIKE = "volume_spike"
    NEWS_EVENT = "news_event"
    TECHNICAL_INDICATOR = "technical_indicator"
    PRE_MARKET_MOVER = "pre_market_mover"
    POST_MARKET_MOVER = "post_market_mover"
    EARNINGS_MOVE = "earnings_move"
    ANALYST_UPGRADE = "analyst_upgrade"
    ANALYST_DOWNGRADE = "analyst_downgrade"
    SECTOR_ROTATION = "sector_rotation"
    UNUSUAL_OPTIONS = "unusual_options"


class MoversSort(str, Enum):
    """Sort order for top-mover queries."""

    VOLUME = "volume"
    TRADES = "trades"
    PERCENT_CHANGE_UP = "percent_change_up"
    PERCENT_CHANGE_DOWN = "percent_change_down"


class TradeAction(str, Enum):
    """Trade direction."""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type."""

    MARKET = "market"
    LIMIT = "limit"


class MarketSession(str, Enum):
    """US equity trading session."""

    CLOSED = "closed"
    PRE_MARKET = "pre_market"
    OPEN = "open"
    AFTER_HOURS = "after_hours"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Quote:
    """Point-in-time quote for a single symbol."""

    symbol: str
    last_price: Decimal
    change: Decimal = Decimal("0")
    change_percent: Decimal = Decimal("0")
    volume: int = 0
    bid: Decimal = Decimal("0")
    ask: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    open: Decimal = Decimal("0")
    previous_close: Decimal = Decimal("0")
    market_cap: Decimal = Decimal("0")
    shares_float: Decimal = Decimal("0")
    is_pre_market: bool = False
    timestamp: datetime = field(default_factory=utc_now)
    news_rating: NewsRating = NewsRating.NONE
    news_headline: str | None = None

    @property
    def pre_market_change_percent(self) -> Decimal:
        """Percent change of the last price versus the previous close."""
        if self.previous_close == 0:
            return Decimal("0")
        return (self.last_price - self.previous_close) / self.previous_close * 100

    @property
    def is_gainer(self) -> bool:
        return self.change > 0

    @property
    def is_loser(self) -> bool:
        return self.change < 0


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar with optional precomputed indicators."""

    symbol: str
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int
    ema12: Decimal | None = None
    ema26: Decimal | None = None
    macd: Decimal | None = None
    macd_signal: Decimal | None = None
    macd_histogram: Decimal | None = None
    rsi: Decimal | None = None
    bollinger_upper: Decimal | None = None
    bollinger_middle: Decimal | None = None
    bollinger_lower: Decimal | None = None


@dataclass(frozen=True)
class Opportunity:
    """Scored trading opportunity. Superseded, never mutated, by later scans."""

    symbol: str
    timestamp: datetime
    opportunity_type: OpportunityType
    score: Decimal
    volume_change: Decimal
    price_change_percent: Decimal
    news_sentiment: NewsRating
    confidence: Decimal
    reason: str = ""
