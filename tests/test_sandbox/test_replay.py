"""Tests for ReplayService playback.

The sandbox clock runs on a FakeTime, so simulated time only moves when a
test advances it. Short real sleeps let the playback task poll.
"""

import asyncio
from datetime import time, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import TRADING_DAY, FakeTime
from tradescope.data.sources import DataSourceKind
from tradescope.data.synthetic import generate_session
from tradescope.market_hours import at_eastern
from tradescope.models import Candle
from tradescope.sandbox.engine import SandboxExecutionEngine
from tradescope.sandbox.models import ReplayConfig, SandboxSession
from tradescope.sandbox.replay import ReplayService, candle_to_quote
from tradescope.streams import Subscription

OPEN = at_eastern(TRADING_DAY, time(9, 30))


def _config(**overrides: object) -> ReplayConfig:
    values: dict = {
        "symbols": ["AAPL"],
        "source": DataSourceKind.SYNTHETIC,
        "historical_date": TRADING_DAY,
        "start_time": time(9, 30),
        "end_time": time(9, 35),
        "playback_speed": 60,
        "pause_on_start": False,
    }
    values.update(overrides)
    return ReplayConfig(**values)


def _drain(subscription: Subscription) -> list:
    items = []
    while subscription.pending():
        items.append(subscription.get_nowait())
    return items


async def _wait_until_stopped(replay: ReplayService) -> None:
    for _ in range(100):
        if not replay.is_running:
            return
        await asyncio.sleep(0.01)


def _candle(minute: int, open_: str, close: str) -> Candle:
    return Candle(
        symbol="AAPL",
        timestamp=OPEN + timedelta(minutes=minute),
        open=Decimal(open_),
        high=max(Decimal(open_), Decimal(close)),
        low=min(Decimal(open_), Decimal(close)),
        close=Decimal(close),
        volume=1000,
    )


class TestCandleToQuote:
    def test_first_bar_measures_against_open(self) -> None:
        candles = [_candle(0, "100", "102")]

        quote = candle_to_quote(candles, 0, OPEN)

        assert quote.last_price == Decimal("102")
        assert quote.previous_close == Decimal("100")
        assert quote.change_percent == Decimal("2")
        assert quote.timestamp == OPEN
        assert not quote.is_pre_market

    def test_later_bar_measures_against_previous_close(self) -> None:
        candles = [_candle(0, "100", "102"), _candle(1, "102", "99.96")]

        quote = candle_to_quote(candles, 1, OPEN + timedelta(minutes=1))

        assert quote.change == Decimal("-2.04")
        assert quote.change_percent == Decimal("-2")

    def test_zero_reference_gives_zero_change_percent(self) -> None:
        quote = candle_to_quote([_candle(0, "0", "1")], 0, OPEN)

        assert quote.change_percent == Decimal("0")


class TestInitialize:
    @pytest.mark.asyncio
    async def test_loads_synthetic_day(self) -> None:
        replay = ReplayService()
        status = replay.status.subscribe()

        assert await replay.initialize(_config(symbols=["AAPL", "MSFT"]))

        assert replay.has_data
        assert set(replay.candles) == {"AAPL", "MSFT"}
        assert _drain(status) == [
            "Loading synthetic data...",
            "Data loaded. Ready to start replay.",
        ]

    @pytest.mark.asyncio
    async def test_no_symbols_reports_error(self) -> None:
        replay = ReplayService()
        status = replay.status.subscribe()

        assert not await replay.initialize(_config(symbols=[]))

        assert not replay.has_data
        assert _drain(status)[-1] == "Error: No data loaded"

    def test_start_without_data_fails(self) -> None:
        replay = ReplayService()
        status = replay.status.subscribe()

        assert replay.start() is False
        assert _drain(status) == ["Error: No data loaded"]
        assert replay.current_time() is None


class TestPlayback:
    @pytest.mark.asyncio
    async def test_emits_current_quote_every_poll(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config())
        quotes = replay.quotes.subscribe()
        expected = generate_session("AAPL", TRADING_DAY)

        assert replay.start()
        await asyncio.sleep(0.05)
        first = _drain(quotes)

        fake_time.advance(2)  # 120 simulated seconds
        await asyncio.sleep(0.05)
        second = _drain(quotes)

        assert len(first) > 1
        assert {q.last_price for q in first} == {expected[0].close}
        assert {q.last_price for q in second} == {expected[2].close}
        assert {q.timestamp for q in second} == {OPEN + timedelta(minutes=2)}
        assert replay.current_time() == OPEN + timedelta(minutes=2)
        await replay.stop()

    @pytest.mark.asyncio
    async def test_completes_at_end_time(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config())
        quotes = replay.quotes.subscribe()
        status = replay.status.subscribe()
        replay.start()
        await asyncio.sleep(0.05)

        fake_time.advance(60)  # well past 09:35
        await _wait_until_stopped(replay)

        assert replay.is_completed
        assert not replay.is_running
        assert _drain(status)[-1] == "Replay completed"
        last = _drain(quotes)[-1]
        assert last.timestamp == OPEN + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_marks_engine_and_advances_session(
        self, fake_time: FakeTime, sandbox_session: SandboxSession
    ) -> None:
        engine = SandboxExecutionEngine(sandbox_session)
        replay = ReplayService(engine=engine, time_fn=fake_time)
        await replay.initialize(_config())
        expected = generate_session("AAPL", TRADING_DAY)

        replay.start()
        fake_time.advance(3)  # 09:33
        await asyncio.sleep(0.05)

        assert sandbox_session.current_time == OPEN + timedelta(minutes=3)
        assert engine.get_price("AAPL") == expected[3].close
        await replay.stop()

    @pytest.mark.asyncio
    async def test_engine_marked_only_when_bar_changes(
        self, fake_time: FakeTime, sandbox_session: SandboxSession
    ) -> None:
        engine = SandboxExecutionEngine(sandbox_session)
        replay = ReplayService(engine=engine, time_fn=fake_time)
        await replay.initialize(_config())

        replay.start()
        await asyncio.sleep(0.05)
        fake_time.advance(0.5)  # 09:30:30, same bar
        await asyncio.sleep(0.05)

        assert [s.timestamp for s in engine.snapshots] == [OPEN]
        assert sandbox_session.current_time == OPEN + timedelta(seconds=30)
        await replay.stop()

    @pytest.mark.asyncio
    async def test_current_quotes_between_bars(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config(symbols=["AAPL", "MSFT"]))
        assert replay.current_quotes() == []
        expected = generate_session("MSFT", TRADING_DAY)

        replay.start()
        fake_time.advance(1.5)  # 09:31:30

        quotes = replay.current_quotes(["MSFT", "UNKNOWN"])

        assert [q.symbol for q in quotes] == ["MSFT"]
        assert quotes[0].last_price == expected[1].close
        assert quotes[0].timestamp == OPEN + timedelta(seconds=90)
        await replay.stop()

    @pytest.mark.asyncio
    async def test_playback_task_logs_with_session_id(
        self, fake_time: FakeTime, sandbox_session: SandboxSession
    ) -> None:
        engine = SandboxExecutionEngine(sandbox_session)
        replay = ReplayService(engine=engine, time_fn=fake_time)
        await replay.initialize(_config())

        with patch("tradescope.sandbox.replay.bind_context") as bind:
            replay.start()
            await asyncio.sleep(0.02)

        bind.assert_called_once_with(session_id="sess-test")
        await replay.stop()


class TestControls:
    @pytest.mark.asyncio
    async def test_pause_on_start_then_resume(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config(pause_on_start=True))
        quotes = replay.quotes.subscribe()
        status = replay.status.subscribe()

        replay.start()
        fake_time.advance(5)
        await asyncio.sleep(0.05)

        assert replay.is_paused
        assert _drain(quotes) == []
        assert _drain(status) == ["Starting replay from 09:30:00", "Replay paused"]

        assert replay.resume()
        await asyncio.sleep(0.05)

        assert {q.timestamp for q in _drain(quotes)} == {OPEN}
        assert _drain(status) == ["Replay resumed"]
        await replay.stop()

    @pytest.mark.asyncio
    async def test_pause_requires_running_clock(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config())
        replay.start()

        assert replay.pause()
        assert not replay.pause()
        assert replay.resume()
        assert not replay.resume()
        await replay.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_playback(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config())
        status = replay.status.subscribe()
        replay.start()
        await asyncio.sleep(0.02)

        await replay.stop()

        assert not replay.is_running
        assert not replay.is_completed
        assert _drain(status)[-1] == "Replay stopped"

    def test_set_speed_is_clamped_and_announced(self) -> None:
        replay = ReplayService()
        status = replay.status.subscribe()

        assert replay.set_speed(500) == 100
        assert _drain(status) == ["Playback speed set to 100x"]

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(self, fake_time: FakeTime) -> None:
        replay = ReplayService(time_fn=fake_time)
        await replay.initialize(_config())

        assert replay.start()
        assert not replay.start()
        await replay.stop()
