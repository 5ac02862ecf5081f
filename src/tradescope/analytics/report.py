"""Sandbox performance report assembly and formatting."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from tradescope.analytics.metrics import (
    DailyPerformance,
    SymbolPerformance,
    average_loss,
    average_win,
    daily_performance,
    daily_returns,
    largest_loss,
    largest_win,
    max_drawdown,
    sharpe_ratio,
    symbol_performance,
    total_commissions,
    total_realized_pnl,
    win_loss_counts,
    win_rate,
)
from tradescope.sandbox.models import (
    BalanceSnapshot,
    SandboxPosition,
    SandboxSession,
    SandboxTrade,
)


@dataclass
class PerformanceReport:
    """Everything known about how a sandbox session performed."""

    session_id: str
    initial_balance: Decimal
    cash_balance: Decimal
    market_value: Decimal
    equity: Decimal
    total_return: Decimal
    total_return_percent: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    total_commissions: Decimal
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: Decimal | None
    largest_win: Decimal | None
    largest_loss: Decimal | None
    average_win: Decimal | None
    average_loss: Decimal | None
    max_drawdown: Decimal
    max_drawdown_percent: Decimal
    sharpe_ratio: Decimal | None
    daily: list[DailyPerformance] = field(default_factory=list)
    by_symbol: list[SymbolPerformance] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output. Decimals become strings."""

        def _s(value: Decimal | None) -> str | None:
            return None if value is None else str(value)

        return {
            "session_id": self.session_id,
            "initial_balance": str(self.initial_balance),
            "cash_balance": str(self.cash_balance),
            "market_value": str(self.market_value),
            "equity": str(self.equity),
            "total_return": str(self.total_return),
            "total_return_percent": str(self.total_return_percent),
            "realized_pnl": str(self.realized_pnl),
            "unrealized_pnl": str(self.unrealized_pnl),
            "total_commissions": str(self.total_commissions),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": _s(self.win_rate),
            "largest_win": _s(self.largest_win),
            "largest_loss": _s(self.largest_loss),
            "average_win": _s(self.average_win),
            "average_loss": _s(self.average_loss),
            "max_drawdown": str(self.max_drawdown),
            "max_drawdown_percent": str(self.max_drawdown_percent),
            "sharpe_ratio": _s(self.sharpe_ratio),
            "daily": [
                {
                    "day": d.day.isoformat(),
                    "starting_equity": str(d.starting_equity),
                    "ending_equity": str(d.ending_equity),
                    "pnl": str(d.pnl),
                    "return_percent": str(d.return_percent),
                    "trades": d.trades,
                }
                for d in self.daily
            ],
            "by_symbol": [
                {
                    "symbol": s.symbol,
                    "trades": s.trades,
                    "total_pnl": str(s.total_pnl),
                    "win_rate": _s(s.win_rate),
                    "average_return_percent": _s(s.average_return_percent),
                }
                for s in self.by_symbol
            ],
        }


def build_performance_report(
    session: SandboxSession,
    trades: list[SandboxTrade],
    positions: list[SandboxPosition],
    snapshots: list[BalanceSnapshot],
) -> PerformanceReport:
    """Derive a PerformanceReport from recorded state. No side effects."""
    market_value = sum((p.market_value for p in positions), Decimal("0"))
    equity = session.current_balance + market_value
    total_return = equity - session.initial_balance
    if session.initial_balance:
        total_return_percent = total_return / session.initial_balance * 100
    else:
        total_return_percent = Decimal("0")
    wins, losses = win_loss_counts(trades)
    drawdown, drawdown_pct = max_drawdown(snapshots, session.initial_balance)

    return PerformanceReport(
        session_id=session.session_id,
        initial_balance=session.initial_balance,
        cash_balance=session.current_balance,
        market_value=market_value,
        equity=equity,
        total_return=total_return,
        total_return_percent=total_return_percent,
        realized_pnl=total_realized_pnl(trades),
        unrealized_pnl=sum((p.unrealized_pnl for p in positions), Decimal("0")),
        total_commissions=total_commissions(trades),
        total_trades=len(trades),
        winning_trades=wins,
        losing_trades=losses,
        win_rate=win_rate(trades),
        largest_win=largest_win(trades),
        largest_loss=largest_loss(trades),
        average_win=average_win(trades),
        average_loss=average_loss(trades),
        max_drawdown=drawdown,
        max_drawdown_percent=drawdown_pct,
        sharpe_ratio=sharpe_ratio(daily_returns(snapshots, session.initial_balance)),
        daily=daily_performance(trades, snapshots, session.initial_balance),
        by_symbol=symbol_performance(trades),
    )


def format_report(report: PerformanceReport) -> str:
    """Human-readable multi-line summary for terminals."""

    def _opt(value: Decimal | None, places: str = "0.01") -> str:
        return "N/A" if value is None else str(value.quantize(Decimal(places)))

    lines = [
        f"Session {report.session_id}",
        f"  Equity:         {report.equity:,.2f} (initial {report.initial_balance:,.2f})",
        f"  Total return:   {report.total_return:,.2f} ({report.total_return_percent:.2f}%)",
        f"  Realized P&L:   {report.realized_pnl:,.2f}",
        f"  Unrealized P&L: {report.unrealized_pnl:,.2f}",
        f"  Trades:         {report.total_trades} "
        f"({report.winning_trades} won / {report.losing_trades} lost, "
        f"win rate {_opt(report.win_rate)}%)",
        f"  Max drawdown:   {report.max_drawdown:,.2f} ({report.max_drawdown_percent:.2f}%)",
        f"  Sharpe ratio:   {_opt(report.sharpe_ratio, '0.001')}",
    ]
    for row in report.by_symbol:
        lines.append(
            f"    {row.symbol:<8} trades={row.trades:<4} pnl={row.total_pnl:,.2f} "
            f"win_rate={_opt(row.win_rate)}%"
        )
    return "\n".join(lines)
