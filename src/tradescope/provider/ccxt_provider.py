"""Quote provider implementation via ccxt async.

Wraps a ccxt.async_support exchange with market loading, ticker and OHLCV
conversion to tradescope models, and async cleanup. Every ccxt failure is
re-raised as ProviderError so callers handle a single transient error type.

The movers ``index`` argument is interpreted as a quote-currency filter
(e.g. "USDT"). Indices that no loaded market quotes in, such as equity
index symbols, fall back to the configured default quote currency.
"""

from datetime import datetime, timezone
from decimal import Decimal

import ccxt.async_support as ccxt_async

from tradescope.config import ProviderSettings
from tradescope.exceptions import ProviderError
from tradescope.logging import get_logger
from tradescope.models import Candle, MoversSort, Quote
from tradescope.provider.client import PriceHistoryRequest, QuoteProvider
from tradescope.provider.market_cap import MarketCapService

logger = get_logger(__name__)

_TIMEFRAMES = {1: "1m", 3: "3m", 5: "5m", 15: "15m", 30: "30m", 60: "1h", 240: "4h", 1440: "1d"}


def _to_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _from_ms(ms: int | None) -> datetime:
    if ms is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _to_ms(moment: datetime) -> int:
    return round(moment.timestamp() * 1000)


def timeframe_for(interval_minutes: int) -> str:
    """Map a bar size in minutes to a ccxt timeframe string."""
    try:
        return _TIMEFRAMES[interval_minutes]
    except KeyError:
        raise ValueError(f"Unsupported candle interval: {interval_minutes} minutes") from None


def ticker_to_quote(symbol: str, ticker: dict) -> Quote:
    """Convert a ccxt unified ticker into a Quote.

    Float and market cap are not exposed by crypto exchanges and are left
    at 0. CcxtQuoteProvider fills market cap from its MarketCapService.
    """
    last = _to_decimal(ticker.get("last") or ticker.get("close"))
    change = _to_decimal(ticker.get("change"))
    previous_close = ticker.get("previousClose")
    if previous_close is None:
        previous_close = last - change
    return Quote(
        symbol=symbol,
        last_price=last,
        change=change,
        change_percent=_to_decimal(ticker.get("percentage")),
        volume=int(ticker.get("baseVolume") or 0),
        bid=_to_decimal(ticker.get("bid")),
        ask=_to_decimal(ticker.get("ask")),
        high=_to_decimal(ticker.get("high")),
        low=_to_decimal(ticker.get("low")),
        open=_to_decimal(ticker.get("open")),
        previous_close=_to_decimal(previous_close),
        timestamp=_from_ms(ticker.get("timestamp")),
    )


class CcxtQuoteProvider(QuoteProvider):
    """Concrete quote provider backed by a ccxt async exchange.

    Args:
        settings: Exchange id and request options.
        exchange: Pre-built ccxt exchange instance (tests inject a mock).
        market_caps: Market cap lookup used to enrich quotes (optional).
    """

    def __init__(
        self,
        settings: ProviderSettings,
        exchange: ccxt_async.Exchange | None = None,
        market_caps: MarketCapService | None = None,
    ) -> None:
        self._settings = settings
        self._market_caps = market_caps
        if exchange is None:
            exchange_class = getattr(ccxt_async, settings.exchange_id)
            exchange = exchange_class(
                {"enableRateLimit": True, "timeout": settings.timeout_ms}
            )
        self._exchange = exchange
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        logger.info("connecting_to_provider", exchange=self._settings.exchange_id)
        try:
            self._markets = await self._exchange.load_markets()
        except ccxt_async.BaseError as exc:
            raise ProviderError(f"load_markets failed: {exc}") from exc
        logger.info("provider_connected", market_count=len(self._markets))

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaked sessions."""
        await self._exchange.close()
        logger.info("provider_connection_closed")

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        if not symbols:
            return []
        try:
            tickers = await self._exchange.fetch_tickers(symbols)
        except ccxt_async.BaseError as exc:
            raise ProviderError(f"fetch_tickers failed: {exc}") from exc
        quotes = [
            ticker_to_quote(symbol, tickers[symbol])
            for symbol in symbols
            if symbol in tickers
        ]
        return await self._enrich(quotes)

    async def get_price_history(self, request: PriceHistoryRequest) -> list[Candle]:
        """Page forward through fetch_ohlcv from start to end."""
        try:
            timeframe = timeframe_for(request.interval_minutes)
        except ValueError as exc:
            raise ProviderError(str(exc)) from exc
        since = _to_ms(request.start)
        until = _to_ms(request.end)
        limit = self._settings.ohlcv_page_limit
        rows: dict[int, list] = {}

        while since <= until:
            try:
                batch = await self._exchange.fetch_ohlcv(
                    request.symbol, timeframe=timeframe, since=since, limit=limit
                )
            except ccxt_async.BaseError as exc:
                raise ProviderError(
                    f"fetch_ohlcv failed for {request.symbol}: {exc}"
                ) from exc
            if not batch:
                break

            for row in batch:
                if since <= row[0] <= until:
                    rows[row[0]] = row

            newest = max(row[0] for row in batch)
            if newest < since or len(batch) < limit:
                break  # no progress or last page
            since = newest + 1

        logger.debug(
            "price_history_fetched", symbol=request.symbol, candles=len(rows)
        )
        return [
            Candle(
                symbol=request.symbol,
                timestamp=_from_ms(ts),
                open=_to_decimal(row[1]),
                high=_to_decimal(row[2]),
                low=_to_decimal(row[3]),
                close=_to_decimal(row[4]),
                volume=int(row[5] or 0),
            )
            for ts, row in sorted(rows.items())
        ]

    async def get_movers(
        self, index: str, sort: MoversSort, frequency: int = 0
    ) -> list[Quote]:
        try:
            if not self._markets:
                self._markets = await self._exchange.load_markets()
            tickers = await self._exchange.fetch_tickers()
        except ccxt_async.BaseError as exc:
            raise ProviderError(f"movers query failed for {index}: {exc}") from exc

        quote_currency = self._quote_currency(index)
        candidates = [
            (symbol, ticker)
            for symbol, ticker in tickers.items()
            if self._markets.get(symbol, {}).get("quote") == quote_currency
            and ticker.get("last") is not None
        ]
        candidates.sort(key=lambda item: _sort_key(item[1], sort), reverse=True)
        quotes = [ticker_to_quote(symbol, ticker) for symbol, ticker in candidates]
        return await self._enrich(quotes)

    async def _enrich(self, quotes: list[Quote]) -> list[Quote]:
        if self._market_caps is None:
            return quotes
        return await self._market_caps.enrich(quotes)

    def _quote_currency(self, index: str) -> str:
        if any(market.get("quote") == index for market in self._markets.values()):
            return index
        return self._settings.default_quote


def _sort_key(ticker: dict, sort: MoversSort) -> float:
    if sort == MoversSort.PERCENT_CHANGE_UP:
        return float(ticker.get("percentage") or 0)
    if sort == MoversSort.PERCENT_CHANGE_DOWN:
        return -float(ticker.get("percentage") or 0)
    if sort == MoversSort.TRADES:
        info = ticker.get("info") or {}
        return float(info.get("count") or 0)
    return float(ticker.get("quoteVolume") or ticker.get("baseVolume") or 0)
