"""Tests for CcxtQuoteProvider.

All tests inject a mocked ccxt exchange to avoid real API calls.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt_async
import pytest

from tradescope.config import ProviderSettings
from tradescope.exceptions import ProviderError
from tradescope.models import MoversSort
from tradescope.provider.ccxt_provider import (
    CcxtQuoteProvider,
    ticker_to_quote,
    timeframe_for,
)
from tradescope.provider.client import PriceHistoryRequest
from tradescope.provider.market_cap import MarketCapService

MOCK_MARKETS = {
    "BTC/USDT": {"symbol": "BTC/USDT", "quote": "USDT"},
    "ETH/USDT": {"symbol": "ETH/USDT", "quote": "USDT"},
    "SOL/USDT": {"symbol": "SOL/USDT", "quote": "USDT"},
    "ETH/BTC": {"symbol": "ETH/BTC", "quote": "BTC"},
}

MOCK_TICKERS = {
    "BTC/USDT": {
        "last": 50000.0, "change": 1000.0, "percentage": 2.04,
        "baseVolume": 1200.5, "quoteVolume": 60_000_000, "timestamp": 1_700_000_000_000,
    },
    "ETH/USDT": {
        "last": 3000.0, "change": 300.0, "percentage": 11.1,
        "baseVolume": 50_000, "quoteVolume": 150_000_000, "timestamp": 1_700_000_000_000,
    },
    "SOL/USDT": {
        "last": 100.0, "change": -5.0, "percentage": -4.76,
        "baseVolume": 90_000, "quoteVolume": 9_000_000, "timestamp": 1_700_000_000_000,
    },
    "ETH/BTC": {
        "last": 0.06, "change": 0.0, "percentage": 0.0,
        "baseVolume": 10, "quoteVolume": 0.6, "timestamp": 1_700_000_000_000,
    },
}


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.load_markets = AsyncMock(return_value=MOCK_MARKETS)
    exchange.fetch_tickers = AsyncMock(return_value=MOCK_TICKERS)
    exchange.fetch_ohlcv = AsyncMock(return_value=[])
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def provider(mock_exchange: MagicMock) -> CcxtQuoteProvider:
    return CcxtQuoteProvider(ProviderSettings(ohlcv_page_limit=3), exchange=mock_exchange)


class TestConversions:
    def test_timeframe_mapping(self) -> None:
        assert timeframe_for(1) == "1m"
        assert timeframe_for(5) == "5m"
        assert timeframe_for(60) == "1h"
        with pytest.raises(ValueError):
            timeframe_for(7)

    def test_ticker_to_quote_uses_decimal(self) -> None:
        quote = ticker_to_quote("BTC/USDT", MOCK_TICKERS["BTC/USDT"])

        assert quote.last_price == Decimal("50000.0")
        assert quote.change == Decimal("1000.0")
        assert quote.previous_close == Decimal("49000.0")
        assert quote.volume == 1200
        assert quote.timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


class TestQuotes:
    @pytest.mark.asyncio
    async def test_get_quotes_keeps_requested_order(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        quotes = await provider.get_quotes(["SOL/USDT", "BTC/USDT", "MISSING/USDT"])

        assert [q.symbol for q in quotes] == ["SOL/USDT", "BTC/USDT"]
        mock_exchange.fetch_tickers.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_symbol_list_skips_exchange(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        assert await provider.get_quotes([]) == []
        mock_exchange.fetch_tickers.assert_not_called()

    @pytest.mark.asyncio
    async def test_ccxt_errors_become_provider_errors(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.fetch_tickers.side_effect = ccxt_async.NetworkError("timeout")

        with pytest.raises(ProviderError):
            await provider.get_quotes(["BTC/USDT"])


class TestMovers:
    @pytest.mark.asyncio
    async def test_sorted_by_percent_gain_within_quote_currency(
        self, provider: CcxtQuoteProvider
    ) -> None:
        await provider.connect()

        movers = await provider.get_movers("USDT", MoversSort.PERCENT_CHANGE_UP)

        assert [q.symbol for q in movers] == ["ETH/USDT", "BTC/USDT", "SOL/USDT"]

    @pytest.mark.asyncio
    async def test_unknown_index_falls_back_to_default_quote(
        self, provider: CcxtQuoteProvider
    ) -> None:
        await provider.connect()

        movers = await provider.get_movers("$COMPX", MoversSort.VOLUME)

        assert [q.symbol for q in movers] == ["ETH/USDT", "BTC/USDT", "SOL/USDT"]

    @pytest.mark.asyncio
    async def test_loads_markets_lazily(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        movers = await provider.get_movers("BTC", MoversSort.VOLUME)

        mock_exchange.load_markets.assert_awaited_once()
        assert [q.symbol for q in movers] == ["ETH/BTC"]


class TestPriceHistory:
    @pytest.mark.asyncio
    async def test_pages_forward_and_dedupes(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        start = datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc)
        base = int(start.timestamp() * 1000)
        minute = 60_000
        page1 = [[base + i * minute, 10, 11, 9, 10.5, 100] for i in range(3)]
        # Second page repeats the last bar of the first page
        page2 = [[base + i * minute, 10, 11, 9, 10.5, 100] for i in range(2, 4)]
        mock_exchange.fetch_ohlcv.side_effect = [page1, page2]

        candles = await provider.get_price_history(
            PriceHistoryRequest("BTC/USDT", start, start + timedelta(minutes=10))
        )

        assert [c.timestamp for c in candles] == [
            start + timedelta(minutes=i) for i in range(4)
        ]
        assert candles[0].close == Decimal("10.5")
        assert mock_exchange.fetch_ohlcv.await_count == 2
        assert mock_exchange.fetch_ohlcv.await_args_list[1].kwargs["since"] == base + 2 * minute + 1

    @pytest.mark.asyncio
    async def test_drops_rows_outside_range(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        start = datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc)
        base = int(start.timestamp() * 1000)
        mock_exchange.fetch_ohlcv.return_value = [
            [base, 1, 1, 1, 1, 1],
            [base + 600_000, 1, 1, 1, 1, 1],
        ]

        candles = await provider.get_price_history(
            PriceHistoryRequest("BTC/USDT", start, start + timedelta(minutes=5))
        )

        assert len(candles) == 1

    @pytest.mark.asyncio
    async def test_unsupported_interval_is_provider_error(
        self, provider: CcxtQuoteProvider, mock_exchange: MagicMock
    ) -> None:
        start = datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc)

        with pytest.raises(ProviderError, match="Unsupported candle interval"):
            await provider.get_price_history(
                PriceHistoryRequest("BTC/USDT", start, start + timedelta(minutes=10), 2)
            )
        mock_exchange.fetch_ohlcv.assert_not_called()


class TestMarketCapEnrichment:
    @pytest.mark.asyncio
    async def test_movers_carry_market_caps(self, mock_exchange: MagicMock) -> None:
        market_caps = MarketCapService()
        market_caps._fetch_market_caps = MagicMock(  # type: ignore[method-assign]
            return_value={"bitcoin": Decimal("1300000000000"), "ethereum": Decimal("400000000000")}
        )
        provider = CcxtQuoteProvider(
            ProviderSettings(), exchange=mock_exchange, market_caps=market_caps
        )

        movers = await provider.get_movers("USDT", MoversSort.VOLUME)

        caps = {q.symbol: q.market_cap for q in movers}
        assert caps["BTC/USDT"] == Decimal("1300000000000")
        assert caps["ETH/USDT"] == Decimal("400000000000")
        assert caps["SOL/USDT"] == Decimal("0")  # unknown to the lookup

    @pytest.mark.asyncio
    async def test_quotes_without_lookup_keep_zero_cap(
        self, provider: CcxtQuoteProvider
    ) -> None:
        quotes = await provider.get_quotes(["BTC/USDT"])

        assert quotes[0].market_cap == Decimal("0")
