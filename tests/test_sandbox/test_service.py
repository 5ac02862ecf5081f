"""Tests for SandboxService sessions, simulated time and trading."""

import asyncio
from datetime import date, time, timedelta
from decimal import Decimal

import pytest

from conftest import TRADING_DAY, FakeTime
from tradescope.config import SandboxDefaults
from tradescope.data.synthetic import generate_session
from tradescope.exceptions import SessionNotFoundError
from tradescope.market_hours import at_eastern
from tradescope.models import MarketSession, TradeAction
from tradescope.sandbox.models import SandboxSettings
from tradescope.sandbox.service import SandboxService

OPEN = at_eastern(TRADING_DAY, time(9, 30))
CLOSE = at_eastern(TRADING_DAY, time(16, 0))


def _service(fake_time: FakeTime | None = None) -> SandboxService:
    defaults = SandboxDefaults(playback_speed=60, watched_symbols=["AAPL"])
    if fake_time is None:
        return SandboxService(defaults)
    return SandboxService(defaults, time_fn=fake_time)


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_session_uses_defaults(self) -> None:
        service = _service()

        session = await service.create_session(7, OPEN, CLOSE)

        assert session.is_active
        assert session.name == "Sandbox 2024-03-12"
        assert session.current_time == OPEN
        assert session.initial_balance == session.current_balance == Decimal("100000")
        assert session.watched_symbols == ["AAPL"]
        assert service.get_session(session.session_id) is session

    @pytest.mark.asyncio
    async def test_new_session_ends_previous(self) -> None:
        service = _service()
        first = await service.create_session(7, OPEN, CLOSE)

        second = await service.create_session(7, OPEN, CLOSE, initial_balance=Decimal("5000"))

        assert not first.is_active
        assert first.completed_at is not None
        assert service.get_active_session(7) is second

    @pytest.mark.asyncio
    async def test_sessions_are_per_user(self) -> None:
        service = _service()
        mine = await service.create_session(1, OPEN, CLOSE)
        await service.create_session(2, OPEN, CLOSE)

        assert mine.is_active
        assert service.get_active_session(3) is None

    @pytest.mark.asyncio
    async def test_history_newest_first(self) -> None:
        service = _service()
        first = await service.create_session(7, OPEN, CLOSE)
        second = await service.create_session(7, OPEN, CLOSE)
        first.created_at = second.created_at - timedelta(seconds=1)

        assert service.get_session_history(7) == [second, first]

    @pytest.mark.asyncio
    async def test_rejects_invalid_window_and_balance(self) -> None:
        service = _service()

        with pytest.raises(ValueError):
            await service.create_session(7, CLOSE, OPEN)
        with pytest.raises(ValueError):
            await service.create_session(7, OPEN, CLOSE, initial_balance=Decimal("0"))

    def test_unknown_session(self) -> None:
        with pytest.raises(SessionNotFoundError):
            _service().get_session("missing")

    @pytest.mark.asyncio
    async def test_end_session_is_idempotent(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)

        await service.end_session(session.session_id)
        completed_at = session.completed_at
        await service.end_session(session.session_id)

        assert not session.is_active
        assert session.completed_at == completed_at


class TestSimulatedTime:
    @pytest.mark.asyncio
    async def test_set_time_clamps_to_window(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)

        assert service.set_time(session.session_id, OPEN - timedelta(hours=1)) == OPEN
        assert service.set_time(session.session_id, CLOSE + timedelta(hours=1)) == CLOSE
        noon = at_eastern(TRADING_DAY, time(12, 0))
        assert service.set_time(session.session_id, noon) == noon
        assert service.get_current_time(session.session_id) == noon

    @pytest.mark.asyncio
    async def test_advance_uses_configured_step(self) -> None:
        service = _service()
        settings = SandboxSettings(time_advance_interval_minutes=5)
        session = await service.create_session(7, OPEN, CLOSE, settings=settings)

        assert await service.advance_time(session.session_id) == OPEN + timedelta(minutes=5)
        assert await service.advance_time(
            session.session_id, timedelta(minutes=1)
        ) == OPEN + timedelta(minutes=6)

    @pytest.mark.asyncio
    async def test_advance_skips_weekend_to_next_open(self) -> None:
        service = _service()
        friday = at_eastern(date(2024, 3, 15), time(10, 0))
        monday_close = at_eastern(date(2024, 3, 18), time(16, 0))
        session = await service.create_session(7, friday, monday_close)

        result = await service.advance_time(session.session_id, timedelta(days=1))

        assert result == at_eastern(date(2024, 3, 18), time(9, 30))

    @pytest.mark.asyncio
    async def test_advance_onto_weekend_allowed_when_not_skipping(self) -> None:
        service = _service()
        friday = at_eastern(date(2024, 3, 15), time(10, 0))
        monday_close = at_eastern(date(2024, 3, 18), time(16, 0))
        session = await service.create_session(
            7, friday, monday_close, settings=SandboxSettings(skip_weekends=False)
        )

        result = await service.advance_time(session.session_id, timedelta(days=1))

        assert result == at_eastern(date(2024, 3, 16), time(10, 0))

    @pytest.mark.asyncio
    async def test_advance_past_end_ends_session(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)

        result = await service.advance_time(session.session_id, timedelta(hours=8))

        assert result == CLOSE
        assert not session.is_active
        # Inactive sessions no longer move
        assert await service.advance_time(session.session_id) == CLOSE

    @pytest.mark.asyncio
    async def test_time_status_during_session(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)
        service.set_time(session.session_id, at_eastern(TRADING_DAY, time(11, 0)))

        status = service.get_time_status(session.session_id)

        assert status.session == MarketSession.OPEN
        assert status.is_market_open
        assert status.can_advance
        assert status.message == "Market is open"
        assert status.next_market_close == CLOSE
        assert status.next_market_open == at_eastern(date(2024, 3, 13), time(9, 30))

    @pytest.mark.asyncio
    async def test_time_status_names_holiday(self) -> None:
        service = _service()
        christmas = at_eastern(date(2024, 12, 25), time(10, 0))
        session = await service.create_session(7, christmas, christmas + timedelta(hours=2))

        status = service.get_time_status(session.session_id)

        assert not status.is_market_open
        assert status.message == "Market is closed for Christmas Day"
        assert status.next_market_open == at_eastern(date(2024, 12, 26), time(9, 30))


class TestTradingAndReplay:
    @pytest.mark.asyncio
    async def test_trade_needs_a_replayed_price(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)

        result = await service.execute_trade(session.session_id, "aapl", TradeAction.BUY, 1)

        assert not result.success
        assert result.error_message == "Quote not available for AAPL"

    @pytest.mark.asyncio
    async def test_replay_feeds_trading_and_reporting(self, fake_time: FakeTime) -> None:
        service = _service(fake_time)
        session = await service.create_session(7, OPEN, CLOSE)
        quotes = service.quotes.subscribe()

        assert await service.start_replay(session.session_id)
        await asyncio.wait_for(quotes.get(), timeout=1)
        result = await service.execute_trade(session.session_id, "aapl", TradeAction.BUY, 10)

        assert result.success
        assert [p.symbol for p in service.get_positions(session.session_id)] == ["AAPL"]
        balance = service.get_balance(session.session_id)
        assert balance.cash == Decimal("100000") - result.total_cost
        assert balance.equity == balance.cash + balance.market_value

        report = service.get_performance_report(session.session_id)
        assert report.total_trades == 1
        assert report.initial_balance == Decimal("100000")

        await service.end_session(session.session_id)
        assert not service.get_replay(session.session_id).is_running

    @pytest.mark.asyncio
    async def test_replay_controls_delegate(self, fake_time: FakeTime) -> None:
        service = _service(fake_time)
        session = await service.create_session(7, OPEN, CLOSE)
        await service.start_replay(session.session_id)

        assert service.pause_replay(session.session_id)
        assert service.resume_replay(session.session_id)
        assert service.set_replay_speed(session.session_id, 0) == 1

        await service.stop_replay(session.session_id)
        assert not service.get_replay(session.session_id).is_running
        await service.close()

    @pytest.mark.asyncio
    async def test_inactive_session_cannot_replay(self) -> None:
        service = _service()
        session = await service.create_session(7, OPEN, CLOSE)
        await service.end_session(session.session_id)

        assert not await service.start_replay(session.session_id)


class TestReplayWindow:
    @pytest.mark.asyncio
    async def test_replay_starts_at_session_time(self, fake_time: FakeTime) -> None:
        service = _service(fake_time)
        start = at_eastern(TRADING_DAY, time(10, 0))
        session = await service.create_session(7, start, start + timedelta(minutes=30))
        replay = service.get_replay(session.session_id)
        expected = generate_session("AAPL", TRADING_DAY)

        assert await service.start_replay(session.session_id)
        await asyncio.sleep(0.05)

        assert replay.current_time() == start
        assert session.current_time == start
        prices = {q.last_price for q in service.get_current_quotes(session.session_id)}
        assert prices == {expected[30].close}
        await service.close()

    @pytest.mark.asyncio
    async def test_replay_reaching_end_time_ends_session(self, fake_time: FakeTime) -> None:
        service = _service(fake_time)
        start = at_eastern(TRADING_DAY, time(10, 0))
        end = start + timedelta(minutes=30)
        session = await service.create_session(7, start, end)
        replay = service.get_replay(session.session_id)

        await service.start_replay(session.session_id)
        await asyncio.sleep(0.02)
        fake_time.advance(40)
        for _ in range(100):
            if not session.is_active:
                break
            await asyncio.sleep(0.01)

        assert not session.is_active
        assert session.current_time == end
        assert replay.is_completed

    @pytest.mark.asyncio
    async def test_current_quotes_follow_simulated_time(self, fake_time: FakeTime) -> None:
        service = _service(fake_time)
        session = await service.create_session(7, OPEN, CLOSE)
        expected = generate_session("AAPL", TRADING_DAY)

        assert service.get_current_quotes(session.session_id) == []

        await service.start_replay(session.session_id)
        fake_time.advance(0.5)  # 09:30:30

        quotes = service.get_current_quotes(session.session_id, ["aapl"])

        assert [q.symbol for q in quotes] == ["AAPL"]
        assert quotes[0].last_price == expected[0].close
        assert quotes[0].timestamp == OPEN + timedelta(seconds=30)
        await service.close()
