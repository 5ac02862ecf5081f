"""Abstract quote/history provider interface.

Defines the contract for all market data providers. Scanner, data source
and sandbox code depends only on this interface, keeping exchange-specific
details isolated in the concrete implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from tradescope.models import Candle, MoversSort, Quote


@dataclass(frozen=True)
class PriceHistoryRequest:
    """Period and interval for a price-history query.

    Args:
        symbol: Provider symbol.
        start: Inclusive start of the range (timezone-aware).
        end: Inclusive end of the range (timezone-aware).
        interval_minutes: Bar size in minutes.
    """

    symbol: str
    start: datetime
    end: datetime
    interval_minutes: int = 1


class QuoteProvider(ABC):
    """Abstract base class for quote and price-history providers."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """Fetch the current quote for each symbol.

        Symbols the provider does not know are omitted from the result.
        """
        ...

    @abstractmethod
    async def get_price_history(self, request: PriceHistoryRequest) -> list[Candle]:
        """Fetch OHLCV bars for the requested range, oldest first."""
        ...

    @abstractmethod
    async def get_movers(
        self, index: str, sort: MoversSort, frequency: int = 0
    ) -> list[Quote]:
        """Fetch the top movers of an index in the given sort order.

        Args:
            index: Index or market segment identifier.
            sort: Ranking order.
            frequency: Provider-specific lookback hint (minutes); 0 means
                the provider default.
        """
        ...
