"""Sandbox trading API: sessions, simulated time, trades and replay control.

Each session owns its execution engine and replay service. A user has at
most one active session; creating a new one ends the previous one.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from tradescope.analytics.report import PerformanceReport, build_performance_report
from tradescope.config import SandboxDefaults
from tradescope.exceptions import SessionNotFoundError
from tradescope.logging import get_logger
from tradescope.market_hours import (
    MARKET_OPEN,
    at_eastern,
    holiday_name,
    is_holiday,
    is_weekend,
    market_session,
    next_market_close,
    next_market_open,
    next_trading_day,
    to_eastern,
)
from tradescope.models import MarketSession, OrderType, Quote, TradeAction, utc_now
from tradescope.provider.client import QuoteProvider
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.sandbox.engine import SandboxExecutionEngine
from tradescope.sandbox.models import (
    ReplayConfig,
    SandboxPosition,
    SandboxSession,
    SandboxSettings,
    SandboxTimeStatus,
    SandboxTradeResult,
)
from tradescope.sandbox.replay import ReplayService
from tradescope.storage.store import MarketDataStore
from tradescope.streams import Broadcaster

logger = get_logger(__name__)


@dataclass
class _SessionRuntime:
    session: SandboxSession
    engine: SandboxExecutionEngine
    replay: ReplayService


@dataclass(frozen=True)
class SandboxBalance:
    """Cash, market value and equity of a session."""

    cash: Decimal
    market_value: Decimal
    equity: Decimal
    initial_balance: Decimal


class SandboxService:
    """Python API over sandbox sessions.

    Args:
        defaults: Default session settings and balance.
        provider: Quote provider passed to provider-backed replay sources.
        store: Market data store for store-backed replays.
        rate_limiter: Budget gate for provider-backed replay sources.
        quotes: Shared stream receiving every session's replayed quotes.
        time_fn: Monotonic wall clock for replay clocks.
    """

    def __init__(
        self,
        defaults: SandboxDefaults | None = None,
        provider: QuoteProvider | None = None,
        store: MarketDataStore | None = None,
        rate_limiter: ApiRateLimiter | None = None,
        quotes: Broadcaster[Quote] | None = None,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._defaults = defaults or SandboxDefaults()
        self._provider = provider
        self._store = store
        self._rate_limiter = rate_limiter
        self.quotes: Broadcaster[Quote] = quotes or Broadcaster("sandbox_quotes")
        self._time_fn = time_fn
        self._sessions: dict[str, _SessionRuntime] = {}

    def _runtime(self, session_id: str) -> _SessionRuntime:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            raise SessionNotFoundError(f"Sandbox session not found: {session_id}")
        return runtime

    # ──────────────────────────────────────────────
    # Sessions
    # ──────────────────────────────────────────────

    async def create_session(
        self,
        user_id: int,
        start_time: datetime,
        end_time: datetime,
        initial_balance: Decimal | None = None,
        name: str | None = None,
        settings: SandboxSettings | None = None,
        watched_symbols: list[str] | None = None,
    ) -> SandboxSession:
        """Create a session and end the user's previous active one.

        Raises:
            ValueError: If the window is empty or the balance is not positive.
        """
        if end_time <= start_time:
            raise ValueError("Session end_time must be after start_time")
        balance = initial_balance if initial_balance is not None else self._defaults.initial_balance
        if balance <= 0:
            raise ValueError("Initial balance must be positive")

        previous = self.get_active_session(user_id)
        if previous is not None:
            await self.end_session(previous.session_id)

        session = SandboxSession(
            session_id=str(uuid4()),
            user_id=user_id,
            name=name or f"Sandbox {to_eastern(start_time):%Y-%m-%d}",
            start_time=start_time,
            end_time=end_time,
            current_time=start_time,
            initial_balance=balance,
            current_balance=balance,
            settings=settings or SandboxSettings.from_defaults(self._defaults),
            watched_symbols=list(watched_symbols or self._defaults.watched_symbols),
        )
        engine = SandboxExecutionEngine(session)
        replay = ReplayService(
            engine=engine,
            provider=self._provider,
            store=self._store,
            rate_limiter=self._rate_limiter,
            quotes=self.quotes,
            time_fn=self._time_fn,
            on_complete=partial(self._replay_completed, session.session_id),
        )
        self._sessions[session.session_id] = _SessionRuntime(session, engine, replay)

        logger.info(
            "sandbox_session_created",
            session_id=session.session_id,
            user_id=user_id,
            start=start_time.isoformat(),
            end=end_time.isoformat(),
            initial_balance=str(balance),
        )
        return session

    def get_session(self, session_id: str) -> SandboxSession:
        return self._runtime(session_id).session

    def get_active_session(self, user_id: int) -> SandboxSession | None:
        for runtime in self._sessions.values():
            if runtime.session.user_id == user_id and runtime.session.is_active:
                return runtime.session
        return None

    def get_session_history(self, user_id: int) -> list[SandboxSession]:
        """All sessions of a user, newest first."""
        sessions = [r.session for r in self._sessions.values() if r.session.user_id == user_id]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def end_session(self, session_id: str) -> SandboxSession:
        """Deactivate a session and stop its replay. Idempotent."""
        runtime = self._runtime(session_id)
        session = runtime.session
        if runtime.replay.is_running and not runtime.replay.is_completed:
            await runtime.replay.stop()
        if session.is_active:
            session.is_active = False
            session.completed_at = utc_now()
            logger.info(
                "sandbox_session_ended",
                session_id=session_id,
                balance=str(session.current_balance),
                trades=len(runtime.engine.trades),
            )
        return session

    # ──────────────────────────────────────────────
    # Simulated time
    # ──────────────────────────────────────────────

    def get_current_time(self, session_id: str) -> datetime:
        return self._runtime(session_id).session.current_time

    def set_time(self, session_id: str, moment: datetime) -> datetime:
        """Jump to ``moment``, clamped to the session window.

        Returns:
            The time actually applied.
        """
        session = self._runtime(session_id).session
        clamped = min(max(moment, session.start_time), session.end_time)
        session.current_time = clamped
        logger.debug("sandbox_time_set", session_id=session_id, time=clamped.isoformat())
        return clamped

    async def advance_time(
        self, session_id: str, interval: timedelta | None = None
    ) -> datetime:
        """Move simulated time forward.

        A step that lands on a skipped weekend or holiday moves on to the
        next allowed day's open. Reaching the end bound ends the session.

        Returns:
            The new current time.
        """
        session = self._runtime(session_id).session
        if not session.is_active:
            return session.current_time

        settings = session.settings
        step = interval or timedelta(minutes=settings.time_advance_interval_minutes)
        target = session.current_time + step

        day = to_eastern(target).date()
        if (settings.skip_weekends and is_weekend(day)) or (
            settings.skip_holidays and is_holiday(day)
        ):
            allowed = next_trading_day(day, settings.skip_weekends, settings.skip_holidays)
            target = at_eastern(allowed, MARKET_OPEN)

        if target >= session.end_time:
            session.current_time = session.end_time
            await self.end_session(session_id)
            return session.current_time

        session.current_time = target
        return target

    def get_time_status(self, session_id: str) -> SandboxTimeStatus:
        session = self._runtime(session_id).session
        now = session.current_time
        current = market_session(now)
        is_open = current == MarketSession.OPEN

        holiday = holiday_name(to_eastern(now).date())
        if is_open:
            message = "Market is open"
        elif holiday is not None:
            message = f"Market is closed for {holiday}"
        else:
            message = "Market is closed"

        return SandboxTimeStatus(
            current_time=now,
            session=current,
            is_market_open=is_open,
            next_market_open=next_market_open(now),
            next_market_close=next_market_close(now),
            can_advance=session.is_active and now < session.end_time,
            message=message,
        )

    # ──────────────────────────────────────────────
    # Trading
    # ──────────────────────────────────────────────

    async def execute_trade(
        self,
        session_id: str,
        symbol: str,
        action: TradeAction,
        quantity: int,
        order_type: OrderType = OrderType.MARKET,
        limit_price: Decimal | None = None,
    ) -> SandboxTradeResult:
        engine = self._runtime(session_id).engine
        return await engine.execute_trade(
            symbol.upper(), action, quantity, order_type, limit_price
        )

    def get_positions(self, session_id: str) -> list[SandboxPosition]:
        return self._runtime(session_id).engine.get_positions()

    def get_balance(self, session_id: str) -> SandboxBalance:
        runtime = self._runtime(session_id)
        market_value = runtime.engine.market_value()
        return SandboxBalance(
            cash=runtime.session.current_balance,
            market_value=market_value,
            equity=runtime.session.current_balance + market_value,
            initial_balance=runtime.session.initial_balance,
        )

    def get_performance_report(self, session_id: str) -> PerformanceReport:
        runtime = self._runtime(session_id)
        return build_performance_report(
            runtime.session,
            runtime.engine.trades,
            runtime.engine.get_positions(),
            runtime.engine.snapshots,
        )

    # ──────────────────────────────────────────────
    # Replay control
    # ──────────────────────────────────────────────

    def get_replay(self, session_id: str) -> ReplayService:
        return self._runtime(session_id).replay

    async def _replay_completed(self, session_id: str) -> None:
        session = self._runtime(session_id).session
        if session.is_active and session.current_time >= session.end_time:
            await self.end_session(session_id)

    def get_current_quotes(
        self, session_id: str, symbols: list[str] | None = None
    ) -> list[Quote]:
        """Replayed quotes at the session's simulated time (last-known-value)."""
        replay = self._runtime(session_id).replay
        if symbols is not None:
            symbols = [s.upper() for s in symbols]
        return replay.current_quotes(symbols)

    async def start_replay(self, session_id: str, config: ReplayConfig | None = None) -> bool:
        """Load data for the session's day and start playback.

        Without a config the session's watched symbols are replayed from
        synthetic data for the day of ``current_time``. Playback starts no
        earlier than ``current_time``; reaching ``end_time`` ends the session.

        Returns:
            False if the session is inactive or no data was loaded.
        """
        runtime = self._runtime(session_id)
        session = runtime.session
        if not session.is_active:
            return False

        if config is None:
            config = ReplayConfig(
                symbols=list(session.watched_symbols),
                historical_date=to_eastern(session.current_time).date(),
                playback_speed=self._defaults.playback_speed,
                minutes_interval=self._defaults.minutes_interval,
                pause_on_start=False,
            )
        if not await runtime.replay.initialize(config):
            return False
        return runtime.replay.start()

    def pause_replay(self, session_id: str) -> bool:
        return self._runtime(session_id).replay.pause()

    def resume_replay(self, session_id: str) -> bool:
        return self._runtime(session_id).replay.resume()

    def set_replay_speed(self, session_id: str, speed: int) -> int:
        return self._runtime(session_id).replay.set_speed(speed)

    async def stop_replay(self, session_id: str) -> None:
        await self._runtime(session_id).replay.stop()

    async def close(self) -> None:
        """Stop every running replay."""
        for runtime in self._sessions.values():
            if runtime.replay.is_running:
                await runtime.replay.stop()
