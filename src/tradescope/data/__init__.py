"""Candle sources for replay, synthetic session generation and indicators."""

from tradescope.data.indicators import (
    compute_bollinger,
    compute_ema,
    compute_macd,
    compute_rsi,
    enrich_candles,
)
from tradescope.data.sources import (
    CandleSource,
    DataSourceKind,
    HistoricalMinuteSource,
    LiveMarketSource,
    StoreSource,
    SyntheticSource,
    build_source,
)
from tradescope.data.synthetic import generate_session

__all__ = [
    "CandleSource",
    "DataSourceKind",
    "HistoricalMinuteSource",
    "LiveMarketSource",
    "StoreSource",
    "SyntheticSource",
    "build_source",
    "compute_bollinger",
    "compute_ema",
    "compute_macd",
    "compute_rsi",
    "enrich_candles",
    "generate_session",
]
