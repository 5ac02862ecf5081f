"""Sliding-window rate limiting for outbound provider calls.

Each RateLimiter tracks the monotonic timestamps of granted requests in a
deque. A request is admitted when fewer than ``max_requests`` timestamps
fall inside the trailing window; otherwise the caller sleeps until the
oldest one expires and tries again.

ApiRateLimiter composes the provider's named budgets and always acquires
the overall budget before the specific one, so a caller is held back by
whichever is tighter.
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from tradescope.config import RateLimitSettings
from tradescope.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Sliding-window admission control for one named budget.

    Args:
        name: Budget name used in logs and status.
        max_requests: Maximum grants inside any trailing window.
        window_seconds: Window length in seconds.
        time_fn: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._name = name
        self._max_requests = max_requests
        self._window = window_seconds
        self._time_fn = time_fn
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window

    def _evict(self, now: float) -> None:
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def acquire(self) -> float:
        """Wait for a slot in the window and record the grant.

        The lock is held while waiting so callers are admitted in arrival
        order. Cancelling the calling task aborts the wait.

        Returns:
            Seconds spent waiting (0.0 when admitted immediately).
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._time_fn()
                self._evict(now)
                if len(self._timestamps) < self._max_requests:
                    self._timestamps.append(now)
                    return waited

                wait = self._timestamps[0] + self._window - now
                logger.warning(
                    "rate_limit_reached",
                    budget=self._name,
                    wait_seconds=round(wait, 3),
                    in_window=len(self._timestamps),
                )
                await asyncio.sleep(max(wait, 0.0))
                waited += max(wait, 0.0)

    def current_count(self) -> int:
        """Number of grants inside the trailing window."""
        cutoff = self._time_fn() - self._window
        return sum(1 for ts in self._timestamps if ts > cutoff)

    def time_until_next_slot(self) -> float:
        """Seconds until a new request would be admitted (0 when free)."""
        now = self._time_fn()
        cutoff = now - self._window
        in_window = [ts for ts in self._timestamps if ts > cutoff]
        if len(in_window) < self._max_requests:
            return 0.0
        return max(in_window[0] + self._window - now, 0.0)

    def utilization(self) -> float:
        """Fraction of the budget used in the trailing window (0.0-1.0)."""
        return self.current_count() / self._max_requests


@dataclass
class RateLimitStatus:
    """Snapshot of all provider budgets."""

    trading_requests: int
    market_data_requests: int
    overall_requests: int
    trading_wait_seconds: float
    market_data_wait_seconds: float
    overall_wait_seconds: float

    @property
    def is_at_limit(self) -> bool:
        return (
            self.trading_wait_seconds > 0
            or self.market_data_wait_seconds > 0
            or self.overall_wait_seconds > 0
        )


class ApiRateLimiter:
    """Provider-wide limiter with trading, market-data and overall budgets.

    Args:
        settings: Budget sizes. Trading and market-data windows are one
            minute, the overall window is one hour.
        time_fn: Monotonic clock shared by all budgets.
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or RateLimitSettings()
        self._trading = RateLimiter(
            "trading", settings.trading_per_minute, 60.0, time_fn
        )
        self._market_data = RateLimiter(
            "market_data", settings.market_data_per_minute, 60.0, time_fn
        )
        self._overall = RateLimiter(
            "overall", settings.overall_per_hour, 3600.0, time_fn
        )

    @property
    def trading(self) -> RateLimiter:
        return self._trading

    @property
    def market_data(self) -> RateLimiter:
        return self._market_data

    @property
    def overall(self) -> RateLimiter:
        return self._overall

    async def wait_for_trading(self) -> float:
        """Acquire the overall budget, then the trading budget."""
        waited = await self._overall.acquire()
        return waited + await self._trading.acquire()

    async def wait_for_market_data(self) -> float:
        """Acquire the overall budget, then the market-data budget."""
        waited = await self._overall.acquire()
        return waited + await self._market_data.acquire()

    def status(self) -> RateLimitStatus:
        return RateLimitStatus(
            trading_requests=self._trading.current_count(),
            market_data_requests=self._market_data.current_count(),
            overall_requests=self._overall.current_count(),
            trading_wait_seconds=self._trading.time_until_next_slot(),
            market_data_wait_seconds=self._market_data.time_until_next_slot(),
            overall_wait_seconds=self._overall.time_until_next_slot(),
        )

    def log_status(self) -> None:
        status = self.status()
        logger.info(
            "api_rate_limits",
            trading=f"{status.trading_requests}/{self._trading.max_requests} per min",
            market_data=f"{status.market_data_requests}/{self._market_data.max_requests} per min",
            overall=f"{status.overall_requests}/{self._overall.max_requests} per hour",
            at_limit=status.is_at_limit,
        )
