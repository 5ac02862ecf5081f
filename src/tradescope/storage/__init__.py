"""SQLite persistence for quotes, opportunities and candles."""

from tradescope.storage.database import MarketDatabase
from tradescope.storage.store import MarketDataStore

__all__ = ["MarketDatabase", "MarketDataStore"]
