"""Data models for sandbox sessions, trades and replay.

CRITICAL: All monetary values use Decimal. Never use float for prices or balances.
Sandbox times are timezone-aware datetimes on the simulated timeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from decimal import Decimal

from tradescope.config import SandboxDefaults
from tradescope.data.sources import DataSourceKind
from tradescope.models import MarketSession, OrderType, TradeAction, utc_now


@dataclass(frozen=True)
class SandboxSettings:
    """Execution-cost and time-advance rules for one session.

    slippage_percentage is in percent units: 0.1 means 0.1%.
    max_positions_per_symbol caps the shares held per symbol.
    """

    auto_advance_time: bool = True
    time_advance_interval_minutes: int = 1
    skip_weekends: bool = True
    skip_holidays: bool = True
    enable_slippage: bool = True
    slippage_percentage: Decimal = Decimal("0.1")
    enable_commissions: bool = False
    commission_per_trade: Decimal = Decimal("0")
    max_positions_per_symbol: int = 10_000

    @classmethod
    def from_defaults(cls, defaults: SandboxDefaults) -> SandboxSettings:
        return cls(
            auto_advance_time=defaults.auto_advance_time,
            time_advance_interval_minutes=defaults.time_advance_interval_minutes,
            skip_weekends=defaults.skip_weekends,
            skip_holidays=defaults.skip_holidays,
            enable_slippage=defaults.enable_slippage,
            slippage_percentage=defaults.slippage_percentage,
            enable_commissions=defaults.enable_commissions,
            commission_per_trade=defaults.commission_per_trade,
            max_positions_per_symbol=defaults.max_positions_per_symbol,
        )

    def with_overrides(self, **kwargs: object) -> SandboxSettings:
        return replace(self, **kwargs)

    @property
    def commission(self) -> Decimal:
        """Commission charged per trade (0 when commissions are disabled)."""
        return self.commission_per_trade if self.enable_commissions else Decimal("0")


@dataclass
class SandboxSession:
    """A simulated trading session over a historical time window.

    ``current_time`` is the only field the replay loop mutates.
    """

    session_id: str
    user_id: int
    name: str
    start_time: datetime
    end_time: datetime
    current_time: datetime
    initial_balance: Decimal
    current_balance: Decimal
    settings: SandboxSettings = field(default_factory=SandboxSettings)
    watched_symbols: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return not self.is_active or self.current_time >= self.end_time


@dataclass
class SandboxPosition:
    """An open long position held in a sandbox session."""

    symbol: str
    quantity: int
    cost_basis: Decimal
    current_price: Decimal
    first_purchase_time: datetime
    last_update_time: datetime

    @property
    def average_cost(self) -> Decimal:
        """Weighted average fill price of the shares still held."""
        if self.quantity == 0:
            return Decimal("0")
        return self.cost_basis / self.quantity

    @property
    def market_value(self) -> Decimal:
        return self.current_price * self.quantity

    @property
    def unrealized_pnl(self) -> Decimal:
        return (self.current_price - self.average_cost) * self.quantity

    @property
    def unrealized_pnl_percent(self) -> Decimal:
        if self.cost_basis == 0:
            return Decimal("0")
        return self.unrealized_pnl / self.cost_basis * 100


@dataclass(frozen=True)
class SandboxTrade:
    """One executed trade in the session ledger.

    ``realized_pnl`` is set on sells only and excludes commission.
    """

    trade_id: str
    session_id: str
    symbol: str
    action: TradeAction
    quantity: int
    price: Decimal
    gross_value: Decimal
    commission: Decimal
    executed_at: datetime
    order_type: OrderType = OrderType.MARKET
    realized_pnl: Decimal | None = None


@dataclass(frozen=True)
class SandboxTradeResult:
    """Outcome of a trade request. Rejections have success=False and a message."""

    success: bool
    error_message: str | None = None
    trade_id: str | None = None
    execution_price: Decimal = Decimal("0")
    execution_time: datetime | None = None
    slippage: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    new_balance: Decimal = Decimal("0")

    @classmethod
    def rejected(cls, message: str, balance: Decimal = Decimal("0")) -> SandboxTradeResult:
        return cls(success=False, error_message=message, new_balance=balance)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Cash and equity at a point on the sandbox timeline."""

    timestamp: datetime
    cash: Decimal
    equity: Decimal


@dataclass(frozen=True)
class SandboxTimeStatus:
    """Where a session stands on the market calendar."""

    current_time: datetime
    session: MarketSession
    is_market_open: bool
    next_market_open: datetime | None
    next_market_close: datetime | None
    can_advance: bool
    message: str


@dataclass
class ReplayConfig:
    """What to replay and how fast.

    Args:
        symbols: Symbols to load and replay.
        source: Candle source strategy.
        historical_date: Trading day to load (today when None).
        start_time: Optional time-of-day to start from instead of the
            earliest candle.
        end_time: Optional time-of-day at which the replay auto-stops.
        playback_speed: Simulated seconds per wall second (1-100).
        pause_on_start: Start in the paused state.
        minutes_interval: Bar size in minutes.
        with_indicators: Compute EMA/MACD/RSI/Bollinger on load.
    """

    symbols: list[str]
    source: DataSourceKind = DataSourceKind.SYNTHETIC
    historical_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    playback_speed: int = 1
    pause_on_start: bool = True
    minutes_interval: int = 1
    with_indicators: bool = False
