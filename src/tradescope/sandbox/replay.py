"""Replay of loaded candles against the sandbox clock.

One asyncio task per replay. Each poll re-reads the clock and, per symbol,
takes the latest candle whose timestamp is <= the simulated time
(last-known-value). A quote stamped with the simulated time is published
for every symbol on every poll; the execution engine is marked to market
only when a symbol's bar changes.

When an execution engine is attached, playback is bounded by its session
window: it never starts before the session's current time and never runs
past the session's end.
"""

import asyncio
import time
from bisect import bisect_right
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from decimal import Decimal

from tradescope.data.sources import build_source
from tradescope.logging import bind_context, get_logger
from tradescope.market_hours import MARKET_CLOSE, at_eastern, is_pre_market, to_eastern
from tradescope.models import Candle, Quote, utc_now
from tradescope.provider.client import QuoteProvider
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.sandbox.clock import SandboxClock
from tradescope.sandbox.engine import SandboxExecutionEngine
from tradescope.sandbox.models import ReplayConfig
from tradescope.storage.store import MarketDataStore
from tradescope.streams import Broadcaster

logger = get_logger(__name__)


def candle_to_quote(candles: list[Candle], index: int, now: datetime) -> Quote:
    """Build the quote a trader would have seen at ``now``.

    Change is measured against the previous candle's close, or against the
    bar's own open for the first candle of the day.
    """
    candle = candles[index]
    reference = candles[index - 1].close if index > 0 else candle.open
    change = candle.close - reference
    change_percent = change / reference * 100 if reference else Decimal("0")
    return Quote(
        symbol=candle.symbol,
        last_price=candle.close,
        change=change,
        change_percent=change_percent,
        volume=candle.volume,
        high=candle.high,
        low=candle.low,
        open=candle.open,
        previous_close=reference,
        is_pre_market=is_pre_market(now),
        timestamp=now,
    )


class ReplayService:
    """Loads a trading day of candles and plays it back in simulated time.

    Args:
        engine: Execution engine to mark to market on every new bar. When
            its session auto-advances time, ``session.current_time`` follows
            the replay clock.
        provider: Quote provider for the live and historical strategies.
        store: Market data store for the store strategy.
        rate_limiter: Budget gate for provider-backed strategies.
        quotes: Stream receiving synthesized quotes.
        status: Stream receiving human-readable status messages.
        time_fn: Monotonic wall clock for the sandbox clock.
        on_complete: Awaited once when playback reaches its end bound.
    """

    def __init__(
        self,
        engine: SandboxExecutionEngine | None = None,
        provider: QuoteProvider | None = None,
        store: MarketDataStore | None = None,
        rate_limiter: ApiRateLimiter | None = None,
        quotes: Broadcaster[Quote] | None = None,
        status: Broadcaster[str] | None = None,
        time_fn: Callable[[], float] = time.monotonic,
        on_complete: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._engine = engine
        self._on_complete = on_complete
        self._provider = provider
        self._store = store
        self._rate_limiter = rate_limiter
        self.quotes: Broadcaster[Quote] = quotes or Broadcaster("replay_quotes")
        self.status: Broadcaster[str] = status or Broadcaster("replay_status")
        self._clock = SandboxClock(time_fn=time_fn)
        self._config: ReplayConfig | None = None
        self._day: date | None = None
        self._candles: dict[str, list[Candle]] = {}
        self._timestamps: dict[str, list[datetime]] = {}
        self._cursor: dict[str, int] = {}
        self._task: asyncio.Task | None = None
        self._completed = False

    @property
    def clock(self) -> SandboxClock:
        return self._clock

    @property
    def config(self) -> ReplayConfig | None:
        return self._config

    @property
    def candles(self) -> dict[str, list[Candle]]:
        return dict(self._candles)

    @property
    def has_data(self) -> bool:
        return bool(self._candles)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        return self._clock.is_paused

    @property
    def is_completed(self) -> bool:
        return self._completed

    def current_time(self) -> datetime | None:
        if self._clock.end_time is None:
            return None
        return self._clock.now()

    def _announce(self, message: str) -> None:
        logger.info("replay_status", message=message)
        self.status.publish(message)

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def initialize(self, config: ReplayConfig) -> bool:
        """Load candles for the configured day.

        Returns:
            True if at least one symbol has data.
        """
        if self.is_running:
            await self.stop()

        self._config = config
        self._clock.set_speed(config.playback_speed)
        self._day = config.historical_date or to_eastern(utc_now()).date()
        self._completed = False
        self._announce(f"Loading {config.source.value} data...")

        source = build_source(
            config.source,
            provider=self._provider,
            store=self._store,
            rate_limiter=self._rate_limiter,
            interval_minutes=config.minutes_interval,
            with_indicators=config.with_indicators,
        )
        loaded = await source.load(config.symbols, self._day)

        self._candles = {symbol: candles for symbol, candles in loaded.items() if candles}
        self._timestamps = {
            symbol: [c.timestamp for c in candles] for symbol, candles in self._candles.items()
        }
        self._cursor = {}

        if not self._candles:
            self._announce("Error: No data loaded")
            return False

        logger.info(
            "replay_data_loaded",
            day=self._day.isoformat(),
            symbols=len(self._candles),
            candles=sum(len(c) for c in self._candles.values()),
        )
        self._announce("Data loaded. Ready to start replay.")
        return True

    def _bounds(self, config: ReplayConfig, day: date) -> tuple[datetime, datetime]:
        earliest = min(ts[0] for ts in self._timestamps.values())
        latest = max(ts[-1] for ts in self._timestamps.values())

        if config.start_time is not None:
            start = at_eastern(day, config.start_time)
        else:
            start = earliest
        if config.end_time is not None:
            end = at_eastern(day, config.end_time)
        else:
            end = max(latest, at_eastern(day, MARKET_CLOSE))

        if self._engine is not None:
            session = self._engine.session
            start = max(start, session.current_time)
            end = min(end, session.end_time)
        return start, end

    def start(self) -> bool:
        """Start playback.

        Returns:
            False if nothing is loaded or a replay is already running.
        """
        if not self._candles or self._config is None or self._day is None:
            self._announce("Error: No data loaded")
            return False
        if self.is_running:
            return False

        start, end = self._bounds(self._config, self._day)
        self._cursor = {}
        self._completed = False
        self._clock.start(start, end, paused=self._config.pause_on_start)
        self._announce(f"Starting replay from {to_eastern(start):%H:%M:%S}")
        if self._config.pause_on_start:
            self._announce("Replay paused")

        self._task = asyncio.create_task(self._run())
        return True

    def pause(self) -> bool:
        if not self._clock.is_running:
            return False
        self._clock.pause()
        self._announce("Replay paused")
        return True

    def resume(self) -> bool:
        if not self._clock.is_paused or not self.is_running:
            return False
        self._clock.resume()
        self._announce("Replay resumed")
        return True

    def set_speed(self, speed: int) -> int:
        applied = self._clock.set_speed(speed)
        self._announce(f"Playback speed set to {applied}x")
        return applied

    async def stop(self) -> None:
        """Cancel playback. Simulated time freezes where it stopped."""
        self._clock.stop()
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._announce("Replay stopped")

    # ──────────────────────────────────────────────
    # Playback loop
    # ──────────────────────────────────────────────

    async def _run(self) -> None:
        if self._engine is not None:
            bind_context(session_id=self._engine.session.session_id)
        try:
            while True:
                if not self._clock.is_paused:
                    now = self._clock.now()
                    end = self._clock.end_time
                    if end is not None and now > end:
                        now = end
                    await self._tick(now)
                    if self._clock.is_past_end():
                        await self._complete()
                        return
                await asyncio.sleep(self._clock.poll_interval())
        except Exception:
            logger.exception("replay_loop_failed")
            self._clock.stop()
            self._announce("Replay stopped")

    def _quotes_at(
        self, now: datetime, symbols: list[str] | None = None
    ) -> dict[str, tuple[int, Quote]]:
        """Last-known quote per symbol at ``now``, with the candle index it came from."""
        current = {}
        for symbol in symbols if symbols is not None else list(self._timestamps):
            timestamps = self._timestamps.get(symbol)
            if not timestamps:
                continue
            index = bisect_right(timestamps, now) - 1
            if index < 0:
                continue
            current[symbol] = (index, candle_to_quote(self._candles[symbol], index, now))
        return current

    def current_quotes(self, symbols: list[str] | None = None) -> list[Quote]:
        """Quotes at the current simulated time (all loaded symbols when None)."""
        now = self.current_time()
        if now is None:
            return []
        end = self._clock.end_time
        if end is not None and now > end:
            now = end
        return [quote for _, quote in self._quotes_at(now, symbols).values()]

    async def _tick(self, now: datetime) -> list[Quote]:
        """Publish the current quote of every symbol; mark the engine on bar changes."""
        current = self._quotes_at(now)
        changed = {}
        for symbol, (index, quote) in current.items():
            if self._cursor.get(symbol) != index:
                self._cursor[symbol] = index
                changed[symbol] = quote.last_price

        if self._engine is not None:
            session = self._engine.session
            if (
                session.is_active
                and session.settings.auto_advance_time
                and now > session.current_time
            ):
                session.current_time = now
            if changed:
                await self._engine.update_prices(changed, now)

        quotes = [quote for _, quote in current.values()]
        for quote in quotes:
            self.quotes.publish(quote)
        return quotes

    async def _complete(self) -> None:
        self._clock.stop()
        self._completed = True
        logger.info("replay_completed", at=self._clock.now().isoformat())
        self._announce("Replay completed")
        if self._on_complete is not None:
            await self._on_complete()
