"""Candle source strategies for sandbox replay.

Four interchangeable strategies share the CandleSource protocol. The kind
is chosen once, when a replay is configured, via build_source(); replay
code only ever sees the protocol.

Every strategy returns candles per symbol in ascending timestamp order with
at most one candle per timestamp. Symbols that fail to load are logged and
left out (or, for HistoricalMinuteSource, replaced by synthetic bars).
"""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Protocol

from tradescope.data.indicators import enrich_candles
from tradescope.data.synthetic import generate_session
from tradescope.exceptions import ProviderError
from tradescope.logging import get_logger
from tradescope.market_hours import MARKET_CLOSE, MARKET_OPEN, at_eastern, to_eastern
from tradescope.models import Candle, utc_now
from tradescope.provider.client import PriceHistoryRequest, QuoteProvider
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.storage.store import MarketDataStore

logger = get_logger(__name__)


class DataSourceKind(str, Enum):
    LIVE_MARKET = "live_market"
    STORE = "store"
    HISTORICAL_MINUTE = "historical_minute"
    SYNTHETIC = "synthetic"


class CandleSource(Protocol):
    """Loads one trading day of candles for a set of symbols."""

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]: ...


def normalize(candles: list[Candle]) -> list[Candle]:
    """Sort ascending by timestamp, keeping the last candle seen per timestamp."""
    by_ts = {c.timestamp: c for c in candles}
    return [by_ts[ts] for ts in sorted(by_ts)]


class SyntheticSource:
    """Seeded random-walk candles, bit-identical per (symbol, date)."""

    def __init__(self, interval_minutes: int = 1) -> None:
        self._interval = interval_minutes

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]:
        data = {}
        for symbol in symbols:
            data[symbol] = generate_session(symbol, day, self._interval)
            logger.info("synthetic_candles_generated", symbol=symbol, count=len(data[symbol]))
        return data


class _ProviderBacked:
    def __init__(
        self,
        provider: QuoteProvider,
        rate_limiter: ApiRateLimiter | None,
        interval_minutes: int,
    ) -> None:
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._interval = interval_minutes

    async def _history(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_market_data()
        candles = await self._provider.get_price_history(
            PriceHistoryRequest(symbol, start, end, self._interval)
        )
        return normalize(candles)


class LiveMarketSource(_ProviderBacked):
    """Today's bars from the 09:30 open up to now. ``day`` is ignored."""

    def __init__(
        self,
        provider: QuoteProvider,
        rate_limiter: ApiRateLimiter | None = None,
        interval_minutes: int = 1,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(provider, rate_limiter, interval_minutes)
        self._now_fn = now_fn

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]:
        now = to_eastern(self._now_fn())
        start = at_eastern(now.date(), MARKET_OPEN)
        data = {}
        for symbol in symbols:
            try:
                data[symbol] = await self._history(symbol, start, now)
            except ProviderError as e:
                logger.error("live_data_load_failed", symbol=symbol, error=str(e))
                continue
            logger.info("live_candles_loaded", symbol=symbol, count=len(data[symbol]))
        return data


class HistoricalMinuteSource(_ProviderBacked):
    """Regular-session bars for a past date, synthetic on provider failure."""

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]:
        start = at_eastern(day, MARKET_OPEN)
        end = at_eastern(day, MARKET_CLOSE)
        data = {}
        for symbol in symbols:
            try:
                data[symbol] = await self._history(symbol, start, end)
                logger.info("historical_candles_loaded", symbol=symbol, count=len(data[symbol]))
            except ProviderError as e:
                logger.warning("historical_minute_fallback", symbol=symbol, error=str(e))
                data[symbol] = generate_session(symbol, day, self._interval)
        return data


class StoreSource:
    """Candles previously persisted in the market data store."""

    def __init__(self, store: MarketDataStore) -> None:
        self._store = store

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]:
        start = at_eastern(day, time(0, 0))
        end = start + timedelta(days=1) - timedelta(milliseconds=1)
        data = {}
        for symbol in symbols:
            candles = normalize(await self._store.get_candles(symbol, start, end))
            if candles:
                data[symbol] = candles
            logger.info("stored_candles_loaded", symbol=symbol, count=len(candles))
        return data


class IndicatorSource:
    """Wraps another source and fills in indicator columns."""

    def __init__(self, inner: CandleSource) -> None:
        self._inner = inner

    async def load(self, symbols: list[str], day: date) -> dict[str, list[Candle]]:
        data = await self._inner.load(symbols, day)
        return {symbol: enrich_candles(candles) for symbol, candles in data.items()}


def build_source(
    kind: DataSourceKind,
    *,
    provider: QuoteProvider | None = None,
    store: MarketDataStore | None = None,
    rate_limiter: ApiRateLimiter | None = None,
    interval_minutes: int = 1,
    with_indicators: bool = False,
) -> CandleSource:
    """Select a candle source strategy.

    Raises:
        ValueError: If the strategy's collaborator was not supplied.
    """
    source: CandleSource
    if kind == DataSourceKind.SYNTHETIC:
        source = SyntheticSource(interval_minutes)
    elif kind == DataSourceKind.STORE:
        if store is None:
            raise ValueError("store source requires a MarketDataStore")
        source = StoreSource(store)
    elif kind in (DataSourceKind.LIVE_MARKET, DataSourceKind.HISTORICAL_MINUTE):
        if provider is None:
            raise ValueError(f"{kind.value} source requires a QuoteProvider")
        if kind == DataSourceKind.LIVE_MARKET:
            source = LiveMarketSource(provider, rate_limiter, interval_minutes)
        else:
            source = HistoricalMinuteSource(provider, rate_limiter, interval_minutes)
    else:
        raise ValueError(f"Unknown data source kind: {kind}")

    if with_indicators:
        source = IndicatorSource(source)
    return source
