"""Async SQLite database manager for market data persistence.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from tradescope.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS quotes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    last_price TEXT NOT NULL,
    change TEXT NOT NULL,
    change_percent TEXT NOT NULL,
    volume INTEGER NOT NULL,
    bid TEXT,
    ask TEXT,
    high TEXT,
    low TEXT,
    open TEXT,
    previous_close TEXT,
    market_cap TEXT,
    shares_float TEXT,
    is_pre_market INTEGER NOT NULL DEFAULT 0,
    news_rating INTEGER NOT NULL DEFAULT 0,
    news_headline TEXT
);

CREATE TABLE IF NOT EXISTS opportunities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    opportunity_type TEXT NOT NULL,
    score TEXT NOT NULL,
    volume_change TEXT NOT NULL,
    price_change_percent TEXT NOT NULL,
    news_sentiment INTEGER NOT NULL,
    confidence TEXT NOT NULL,
    reason TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS candles (
    symbol TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    open TEXT NOT NULL,
    high TEXT NOT NULL,
    low TEXT NOT NULL,
    close TEXT NOT NULL,
    volume INTEGER NOT NULL,
    ema12 TEXT,
    ema26 TEXT,
    macd TEXT,
    macd_signal TEXT,
    macd_histogram TEXT,
    rsi TEXT,
    bollinger_upper TEXT,
    bollinger_middle TEXT,
    bollinger_lower TEXT,
    PRIMARY KEY (symbol, timestamp_ms)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_quotes_symbol_ts
    ON quotes(symbol, timestamp_ms);

CREATE INDEX IF NOT EXISTS idx_quotes_ts
    ON quotes(timestamp_ms);

CREATE INDEX IF NOT EXISTS idx_opportunities_ts
    ON opportunities(timestamp_ms);
"""


class MarketDatabase:
    """Async SQLite connection manager for quotes, opportunities and candles.

    Usage:
        async with MarketDatabase("data/market.db") as database:
            await database.db.execute("SELECT ...")

    ``":memory:"`` is accepted as a path for tests.
    """

    def __init__(self, db_path: str = "data/market.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, set WAL mode and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()
        await self._ensure_schema_version()

        logger.info("market_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("market_db_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        if await cursor.fetchone() is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
