"""Sandbox performance analytics calculations.

Pure Decimal analytics over the trade ledger and balance snapshots. Nothing
here mutates state, so every value can be recomputed on demand.

A closed trade is a sell; its realized P&L decides win (> 0) or loss (< 0).
Daily figures group snapshots by US/Eastern calendar date.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from tradescope.market_hours import to_eastern
from tradescope.sandbox.models import BalanceSnapshot, SandboxTrade

_ZERO = Decimal("0")
TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class DailyPerformance:
    """Equity movement over one calendar day."""

    day: date
    starting_equity: Decimal
    ending_equity: Decimal
    pnl: Decimal
    return_percent: Decimal
    trades: int


@dataclass(frozen=True)
class SymbolPerformance:
    """Closed-trade results for one symbol."""

    symbol: str
    trades: int
    total_pnl: Decimal
    win_rate: Decimal | None
    average_return_percent: Decimal | None


def _pct(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return _ZERO
    return (part / whole * 100).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def closed_pnls(trades: list[SandboxTrade]) -> list[Decimal]:
    """Realized P&L of every sell, in ledger order."""
    return [t.realized_pnl for t in trades if t.realized_pnl is not None]


def total_realized_pnl(trades: list[SandboxTrade]) -> Decimal:
    return sum(closed_pnls(trades), _ZERO)


def total_commissions(trades: list[SandboxTrade]) -> Decimal:
    return sum((t.commission for t in trades), _ZERO)


def win_loss_counts(trades: list[SandboxTrade]) -> tuple[int, int]:
    """Return (winning, losing) closed trades. Break-even sells count as neither."""
    pnls = closed_pnls(trades)
    return sum(1 for p in pnls if p > 0), sum(1 for p in pnls if p < 0)


def win_rate(trades: list[SandboxTrade]) -> Decimal | None:
    """Winning closed trades as a percent of all closed trades.

    Returns:
        Percent rounded to 2 places, or None if nothing was closed.
    """
    pnls = closed_pnls(trades)
    if not pnls:
        return None
    wins = sum(1 for p in pnls if p > 0)
    rate = Decimal(wins) / Decimal(len(pnls)) * 100
    return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def largest_win(trades: list[SandboxTrade]) -> Decimal | None:
    wins = [p for p in closed_pnls(trades) if p > 0]
    return max(wins) if wins else None


def largest_loss(trades: list[SandboxTrade]) -> Decimal | None:
    losses = [p for p in closed_pnls(trades) if p < 0]
    return min(losses) if losses else None


def average_win(trades: list[SandboxTrade]) -> Decimal | None:
    wins = [p for p in closed_pnls(trades) if p > 0]
    if not wins:
        return None
    return sum(wins, _ZERO) / len(wins)


def average_loss(trades: list[SandboxTrade]) -> Decimal | None:
    losses = [p for p in closed_pnls(trades) if p < 0]
    if not losses:
        return None
    return sum(losses, _ZERO) / len(losses)


def max_drawdown(
    snapshots: list[BalanceSnapshot], initial_balance: Decimal
) -> tuple[Decimal, Decimal]:
    """Largest peak-to-trough equity decline.

    The initial balance is the first peak.

    Returns:
        (drawdown amount, drawdown as percent of the peak it fell from).
        Both are zero when equity never declined.
    """
    peak = initial_balance
    max_dd = _ZERO
    max_dd_pct = _ZERO
    for snapshot in snapshots:
        if snapshot.equity > peak:
            peak = snapshot.equity
        dd = peak - snapshot.equity
        if dd > max_dd:
            max_dd = dd
            max_dd_pct = _pct(dd, peak)
    return max_dd, max_dd_pct


def end_of_day_equity(snapshots: list[BalanceSnapshot]) -> dict[date, Decimal]:
    """Last recorded equity per Eastern calendar day, in date order."""
    by_day: dict[date, Decimal] = {}
    for snapshot in sorted(snapshots, key=lambda s: s.timestamp):
        by_day[to_eastern(snapshot.timestamp).date()] = snapshot.equity
    return dict(sorted(by_day.items()))


def daily_returns(
    snapshots: list[BalanceSnapshot], initial_balance: Decimal
) -> list[Decimal]:
    """Fractional day-over-day equity returns (the first day vs the initial balance)."""
    returns = []
    previous = initial_balance
    for equity in end_of_day_equity(snapshots).values():
        if previous != 0:
            returns.append((equity - previous) / previous)
        previous = equity
    return returns


def sharpe_ratio(
    returns: list[Decimal],
    annualization_factor: int = TRADING_DAYS_PER_YEAR,
) -> Decimal | None:
    """Annualized Sharpe ratio of daily returns (risk-free rate 0).

    Sharpe = (mean / sample_std_dev) * sqrt(annualization)

    Returns:
        Sharpe ratio as Decimal, or None if < 2 returns or zero std dev.
    """
    if len(returns) < 2:
        return None

    n = Decimal(len(returns))
    mean = sum(returns, _ZERO) / n
    variance = sum(((r - mean) ** 2 for r in returns), _ZERO) / (n - 1)
    std_dev = variance.sqrt()
    if std_dev == 0:
        return None

    return (mean / std_dev) * Decimal(annualization_factor).sqrt()


def daily_performance(
    trades: list[SandboxTrade],
    snapshots: list[BalanceSnapshot],
    initial_balance: Decimal,
) -> list[DailyPerformance]:
    trades_per_day: dict[date, int] = defaultdict(int)
    for trade in trades:
        trades_per_day[to_eastern(trade.executed_at).date()] += 1

    rows = []
    previous = initial_balance
    for day, equity in end_of_day_equity(snapshots).items():
        pnl = equity - previous
        rows.append(
            DailyPerformance(
                day=day,
                starting_equity=previous,
                ending_equity=equity,
                pnl=pnl,
                return_percent=_pct(pnl, previous),
                trades=trades_per_day.get(day, 0),
            )
        )
        previous = equity
    return rows


def symbol_performance(trades: list[SandboxTrade]) -> list[SymbolPerformance]:
    """Per-symbol trade count, realized P&L, win rate and average return.

    A sell's return is its realized P&L over the cost basis it closed
    (gross proceeds minus realized P&L).
    """
    grouped: dict[str, list[SandboxTrade]] = defaultdict(list)
    for trade in trades:
        grouped[trade.symbol].append(trade)

    rows = []
    for symbol in sorted(grouped):
        group = grouped[symbol]
        returns = [
            _pct(t.realized_pnl, t.gross_value - t.realized_pnl)
            for t in group
            if t.realized_pnl is not None
        ]
        rows.append(
            SymbolPerformance(
                symbol=symbol,
                trades=len(group),
                total_pnl=total_realized_pnl(group),
                win_rate=win_rate(group),
                average_return_percent=(
                    sum(returns, _ZERO) / len(returns) if returns else None
                ),
            )
        )
    return rows
