"""Shared test fixtures for tradescope."""

from datetime import date, time
from decimal import Decimal

import pytest

from tradescope.config import AppSettings, MarketSettings, SandboxDefaults, SchedulerSettings
from tradescope.market_hours import at_eastern
from tradescope.models import Quote
from tradescope.sandbox.models import SandboxSession, SandboxSettings

# A regular Tuesday session (no holiday).
TRADING_DAY = date(2024, 3, 12)


class FakeTime:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_quote(symbol: str = "AAPL", **overrides: object) -> Quote:
    """Quote that passes the default filters unless overridden."""
    values: dict = {
        "symbol": symbol,
        "last_price": Decimal("50.00"),
        "change": Decimal("6.00"),
        "change_percent": Decimal("12.0"),
        "volume": 6_000_000,
        "previous_close": Decimal("44.00"),
        "shares_float": Decimal("50000000"),
        "market_cap": Decimal("5000000000"),  # $5B, mid cap
        "timestamp": at_eastern(TRADING_DAY, time(10, 0)),
    }
    values.update(overrides)
    return Quote(**values)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def app_settings() -> AppSettings:
    """AppSettings with test defaults."""
    return AppSettings(
        log_level="DEBUG",
        market=MarketSettings(),
        scheduler=SchedulerSettings(),
        sandbox=SandboxDefaults(),
    )


@pytest.fixture
def sandbox_session() -> SandboxSession:
    """Active session for TRADING_DAY with $100,000 and 0.1% slippage."""
    start = at_eastern(TRADING_DAY, time(9, 30))
    end = at_eastern(TRADING_DAY, time(16, 0))
    return SandboxSession(
        session_id="sess-test",
        user_id=1,
        name="test",
        start_time=start,
        end_time=end,
        current_time=start,
        initial_balance=Decimal("100000.00"),
        current_balance=Decimal("100000.00"),
        settings=SandboxSettings(),
    )

