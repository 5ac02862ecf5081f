"""Typed SQLite read/write abstraction for market data.

Provides MarketDataStore with typed methods for quotes, opportunities and
candles. All SQL is isolated behind this interface.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
Timestamps are stored as Unix milliseconds (UTC).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tradescope.logging import get_logger
from tradescope.models import (
    Candle,
    MoversSort,
    NewsRating,
    Opportunity,
    OpportunityType,
    Quote,
    utc_now,
)
from tradescope.storage.database import MarketDatabase

logger = get_logger(__name__)

# Opportunities are kept this much longer than quotes and candles.
OPPORTUNITY_EXTRA_RETENTION = timedelta(days=7)

_QUOTE_COLUMNS = (
    "symbol, timestamp_ms, last_price, change, change_percent, volume, bid, ask, "
    "high, low, open, previous_close, market_cap, shares_float, is_pre_market, "
    "news_rating, news_headline"
)

_CANDLE_COLUMNS = (
    "symbol, timestamp_ms, open, high, low, close, volume, ema12, ema26, macd, "
    "macd_signal, macd_histogram, rsi, bollinger_upper, bollinger_middle, bollinger_lower"
)


def to_ms(moment: datetime) -> int:
    return round(moment.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _quote_from_row(row: tuple) -> Quote:
    return Quote(
        symbol=row[0],
        timestamp=from_ms(row[1]),
        last_price=Decimal(row[2]),
        change=Decimal(row[3]),
        change_percent=Decimal(row[4]),
        volume=row[5],
        bid=Decimal(row[6] or "0"),
        ask=Decimal(row[7] or "0"),
        high=Decimal(row[8] or "0"),
        low=Decimal(row[9] or "0"),
        open=Decimal(row[10] or "0"),
        previous_close=Decimal(row[11] or "0"),
        market_cap=Decimal(row[12] or "0"),
        shares_float=Decimal(row[13] or "0"),
        is_pre_market=bool(row[14]),
        news_rating=NewsRating(row[15]),
        news_headline=row[16],
    )


def _candle_from_row(row: tuple) -> Candle:
    return Candle(
        symbol=row[0],
        timestamp=from_ms(row[1]),
        open=Decimal(row[2]),
        high=Decimal(row[3]),
        low=Decimal(row[4]),
        close=Decimal(row[5]),
        volume=row[6],
        ema12=_dec(row[7]),
        ema26=_dec(row[8]),
        macd=_dec(row[9]),
        macd_signal=_dec(row[10]),
        macd_histogram=_dec(row[11]),
        rsi=_dec(row[12]),
        bollinger_upper=_dec(row[13]),
        bollinger_middle=_dec(row[14]),
        bollinger_lower=_dec(row[15]),
    )


class MarketDataStore:
    """Async SQLite store for quotes, opportunities and candles.

    Usage:
        async with MarketDatabase("data/market.db") as database:
            store = MarketDataStore(database)
            await store.write_quotes_batch(quotes)
    """

    def __init__(self, database: MarketDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def write_quotes_batch(self, quotes: list[Quote]) -> int:
        """Append quote snapshots. Returns the number of rows written."""
        if not quotes:
            return 0

        data = [
            (
                q.symbol,
                to_ms(q.timestamp),
                str(q.last_price),
                str(q.change),
                str(q.change_percent),
                q.volume,
                str(q.bid),
                str(q.ask),
                str(q.high),
                str(q.low),
                str(q.open),
                str(q.previous_close),
                str(q.market_cap),
                str(q.shares_float),
                1 if q.is_pre_market else 0,
                int(q.news_rating),
                q.news_headline,
            )
            for q in quotes
        ]
        await self._database.db.executemany(
            f"INSERT INTO quotes ({_QUOTE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()
        logger.debug("quotes_written", count=len(data))
        return len(data)

    async def write_opportunity(self, opportunity: Opportunity) -> None:
        await self._database.db.execute(
            "INSERT INTO opportunities "
            "(symbol, timestamp_ms, opportunity_type, score, volume_change, "
            "price_change_percent, news_sentiment, confidence, reason) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                opportunity.symbol,
                to_ms(opportunity.timestamp),
                opportunity.opportunity_type.value,
                str(opportunity.score),
                str(opportunity.volume_change),
                str(opportunity.price_change_percent),
                int(opportunity.news_sentiment),
                str(opportunity.confidence),
                opportunity.reason,
            ),
        )
        await self._database.db.commit()

    async def insert_candles(self, candles: list[Candle]) -> int:
        """Insert candles, ignoring duplicates via INSERT OR IGNORE.

        Returns the number of actually inserted rows.
        """
        if not candles:
            return 0

        data = [
            (
                c.symbol,
                to_ms(c.timestamp),
                str(c.open),
                str(c.high),
                str(c.low),
                str(c.close),
                c.volume,
                _text(c.ema12),
                _text(c.ema26),
                _text(c.macd),
                _text(c.macd_signal),
                _text(c.macd_histogram),
                _text(c.rsi),
                _text(c.bollinger_upper),
                _text(c.bollinger_middle),
                _text(c.bollinger_lower),
            )
            for c in candles
        ]
        cursor = await self._database.db.executemany(
            f"INSERT OR IGNORE INTO candles ({_CANDLE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug("candles_inserted", total=len(candles), inserted=inserted)
        return inserted

    async def delete_older_than(self, cutoff: datetime) -> dict[str, int]:
        """Delete quotes and candles older than cutoff.

        Opportunities are kept an extra week for analysis. Returns the
        number of rows deleted per table.
        """
        cutoff_ms = to_ms(cutoff)
        opportunity_cutoff_ms = to_ms(cutoff - OPPORTUNITY_EXTRA_RETENTION)
        deleted: dict[str, int] = {}

        for table, threshold in (
            ("quotes", cutoff_ms),
            ("candles", cutoff_ms),
            ("opportunities", opportunity_cutoff_ms),
        ):
            cursor = await self._database.db.execute(
                f"DELETE FROM {table} WHERE timestamp_ms < ?", (threshold,)
            )
            deleted[table] = cursor.rowcount
        await self._database.db.commit()

        logger.info("old_data_deleted", cutoff=cutoff.isoformat(), **deleted)
        return deleted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def read_top_movers(
        self,
        n: int,
        pre_market: bool,
        sort: MoversSort = MoversSort.PERCENT_CHANGE_UP,
        lookback: timedelta = timedelta(hours=1),
        now: datetime | None = None,
    ) -> list[Quote]:
        """Latest quote per symbol within the lookback window, ranked.

        TRADES has no stored trade count and ranks by volume.
        """
        since_ms = to_ms((now or utc_now()) - lookback)
        cursor = await self._database.db.execute(
            f"SELECT {_QUOTE_COLUMNS} FROM ("
            f"  SELECT {_QUOTE_COLUMNS}, ROW_NUMBER() OVER ("
            "    PARTITION BY symbol ORDER BY timestamp_ms DESC, id DESC"
            "  ) AS rn FROM quotes WHERE is_pre_market = ? AND timestamp_ms >= ?"
            ") WHERE rn = 1",
            (1 if pre_market else 0, since_ms),
        )
        quotes = [_quote_from_row(row) for row in await cursor.fetchall()]

        # change_percent is TEXT, so ranking happens on Decimals here.
        if sort == MoversSort.PERCENT_CHANGE_DOWN:
            quotes.sort(key=lambda q: q.change_percent)
        elif sort == MoversSort.PERCENT_CHANGE_UP:
            quotes.sort(key=lambda q: q.change_percent, reverse=True)
        else:
            quotes.sort(key=lambda q: q.volume, reverse=True)
        return quotes[:n]

    async def get_latest_quote(self, symbol: str) -> Quote | None:
        cursor = await self._database.db.execute(
            f"SELECT {_QUOTE_COLUMNS} FROM quotes WHERE symbol = ? "
            "ORDER BY timestamp_ms DESC, id DESC LIMIT 1",
            (symbol,),
        )
        row = await cursor.fetchone()
        return _quote_from_row(row) if row else None

    async def get_recent_opportunities(
        self,
        window: timedelta,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[Opportunity]:
        """Opportunities inside the trailing window, highest score first."""
        since_ms = to_ms((now or utc_now()) - window)
        cursor = await self._database.db.execute(
            "SELECT symbol, timestamp_ms, opportunity_type, score, volume_change, "
            "price_change_percent, news_sentiment, confidence, reason "
            "FROM opportunities WHERE timestamp_ms >= ? ORDER BY timestamp_ms DESC",
            (since_ms,),
        )
        rows = await cursor.fetchall()
        opportunities = [
            Opportunity(
                symbol=row[0],
                timestamp=from_ms(row[1]),
                opportunity_type=OpportunityType(row[2]),
                score=Decimal(row[3]),
                volume_change=Decimal(row[4]),
                price_change_percent=Decimal(row[5]),
                news_sentiment=NewsRating(row[6]),
                confidence=Decimal(row[7]),
                reason=row[8],
            )
            for row in rows
        ]
        opportunities.sort(key=lambda o: o.score, reverse=True)
        return opportunities[:limit]

    async def get_candles(
        self,
        symbol: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Candle]:
        """Query candles for a symbol within an optional inclusive range.

        Returns candles ordered by timestamp ASC.
        """
        conditions = ["symbol = ?"]
        params: list = [symbol]

        if start is not None:
            conditions.append("timestamp_ms >= ?")
            params.append(to_ms(start))
        if end is not None:
            conditions.append("timestamp_ms <= ?")
            params.append(to_ms(end))

        where = " AND ".join(conditions)
        cursor = await self._database.db.execute(
            f"SELECT {_CANDLE_COLUMNS} FROM candles WHERE {where} "
            "ORDER BY timestamp_ms ASC",
            params,
        )
        return [_candle_from_row(row) for row in await cursor.fetchall()]
