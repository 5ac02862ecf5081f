"""Tests for PerformanceReport assembly, serialization and formatting."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import TRADING_DAY
from tradescope.analytics.report import (
    PerformanceReport,
    build_performance_report,
    format_report,
)
from tradescope.models import TradeAction
from tradescope.sandbox.engine import SandboxExecutionEngine
from tradescope.sandbox.models import SandboxSession, SandboxSettings


async def _traded_engine(session: SandboxSession) -> SandboxExecutionEngine:
    """Win 100 on AAPL, lose 20 on MSFT, keep 10 TSLA open with +50 unrealized."""
    session.settings = SandboxSettings(enable_slippage=False)
    now = session.current_time
    engine = SandboxExecutionEngine(session)
    await engine.update_prices(
        {"AAPL": Decimal("100"), "MSFT": Decimal("50"), "TSLA": Decimal("20")}, now
    )
    await engine.execute_trade("AAPL", TradeAction.BUY, 10)
    await engine.execute_trade("MSFT", TradeAction.BUY, 10)
    await engine.execute_trade("TSLA", TradeAction.BUY, 10)

    later = now + timedelta(minutes=30)
    session.current_time = later
    await engine.update_prices(
        {"AAPL": Decimal("110"), "MSFT": Decimal("48"), "TSLA": Decimal("25")}, later
    )
    await engine.execute_trade("AAPL", TradeAction.SELL, 10)
    await engine.execute_trade("MSFT", TradeAction.SELL, 10)
    return engine


def _report(session: SandboxSession, engine: SandboxExecutionEngine) -> PerformanceReport:
    return build_performance_report(
        session, engine.trades, engine.get_positions(), engine.snapshots
    )


class TestBuildReport:
    @pytest.mark.asyncio
    async def test_totals(self, sandbox_session: SandboxSession) -> None:
        engine = await _traded_engine(sandbox_session)

        report = _report(sandbox_session, engine)

        assert report.realized_pnl == Decimal("80")
        assert report.unrealized_pnl == Decimal("50")
        assert report.market_value == Decimal("250")
        assert report.equity == Decimal("100130.00")
        assert report.total_return == Decimal("130.00")
        assert report.total_return_percent == Decimal("0.13")
        assert report.total_trades == 5
        assert (report.winning_trades, report.losing_trades) == (1, 1)
        assert report.win_rate == Decimal("50.00")
        assert report.largest_win == Decimal("100")
        assert report.largest_loss == Decimal("-20")

    @pytest.mark.asyncio
    async def test_single_day_has_no_sharpe(self, sandbox_session: SandboxSession) -> None:
        engine = await _traded_engine(sandbox_session)

        report = _report(sandbox_session, engine)

        assert report.sharpe_ratio is None
        assert len(report.daily) == 1
        assert report.daily[0].day == TRADING_DAY
        assert report.daily[0].trades == 5
        assert [s.symbol for s in report.by_symbol] == ["AAPL", "MSFT", "TSLA"]

    def test_untouched_session(self, sandbox_session: SandboxSession) -> None:
        report = build_performance_report(sandbox_session, [], [], [])

        assert report.equity == sandbox_session.initial_balance
        assert report.total_return == Decimal("0")
        assert report.win_rate is None
        assert report.max_drawdown == Decimal("0")
        assert report.daily == []


class TestSerialization:
    @pytest.mark.asyncio
    async def test_to_dict_is_json_safe(self, sandbox_session: SandboxSession) -> None:
        engine = await _traded_engine(sandbox_session)

        data = json.loads(json.dumps(_report(sandbox_session, engine).to_dict()))

        assert data["session_id"] == "sess-test"
        assert data["realized_pnl"] == "80.00"
        assert data["sharpe_ratio"] is None
        assert data["daily"][0]["day"] == TRADING_DAY.isoformat()
        assert data["by_symbol"][2]["win_rate"] is None

    def test_format_report_shows_missing_values(self, sandbox_session: SandboxSession) -> None:
        report = build_performance_report(sandbox_session, [], [], [])

        text = format_report(report)

        assert text.splitlines()[0] == "Session sess-test"
        assert "Equity:         100,000.00" in text
        assert "win rate N/A%" in text
        assert "Sharpe ratio:   N/A" in text

    @pytest.mark.asyncio
    async def test_format_report_lists_symbols(self, sandbox_session: SandboxSession) -> None:
        engine = await _traded_engine(sandbox_session)

        text = format_report(_report(sandbox_session, engine))

        assert "AAPL" in text
        assert "pnl=100.00" in text

