"""Market data scheduler -- polling, opportunity scanning, discovery and cleanup.

Runs five independent periodic activities as asyncio tasks:

  pre_market        quotes for watched symbols, only 04:00-09:30 ET
  market_hours      quotes for active symbols, only 09:30-16:00 ET
  opportunity_scan  score index movers, emit opportunities, refresh active set
  discovery         grow the watched set from the movers of several indices
  cleanup           delete old rows once a day at a fixed local time

Each tick runs in its own task so a slow run never delays the timer; a
tick that finds its activity's previous run still in progress is skipped.
Provider calls pass the rate limiter first. Failures are logged and the
tick is dropped; nothing is retried within a tick.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta

from tradescope.config import SchedulerSettings
from tradescope.exceptions import ProviderError
from tradescope.logging import get_logger
from tradescope.market_hours import is_market_hours, is_pre_market
from tradescope.models import MoversSort, Opportunity, OpportunityType, Quote, utc_now
from tradescope.provider.client import QuoteProvider
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.scanner.scorer import OpportunityScorer
from tradescope.storage.store import MarketDataStore
from tradescope.streams import Broadcaster

logger = get_logger(__name__)

PRE_MARKET = "pre_market"
MARKET_HOURS = "market_hours"
OPPORTUNITY_SCAN = "opportunity_scan"
DISCOVERY = "discovery"
CLEANUP = "cleanup"

ACTIVITIES = (PRE_MARKET, MARKET_HOURS, OPPORTUNITY_SCAN, DISCOVERY, CLEANUP)

_SCAN_PASSES = (
    (MoversSort.VOLUME, OpportunityType.VOLUME_SPIKE),
    (MoversSort.PERCENT_CHANGE_UP, OpportunityType.PRE_MARKET_MOVER),
)


def seconds_until(target: time, now: datetime) -> float:
    """Seconds from ``now`` until the next occurrence of local clock time ``target``."""
    candidate = now.replace(
        hour=target.hour, minute=target.minute, second=target.second, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return (candidate - now).total_seconds()


class MarketDataScheduler:
    """Drives quote collection and opportunity scanning.

    Args:
        provider: Quote/history provider.
        store: Persistence for quotes and opportunities.
        scorer: Filter and scoring rules.
        rate_limiter: Provider request budgets.
        settings: Cadences, indices and retention.
        quotes: Quote stream (created when omitted).
        opportunities: Opportunity stream (created when omitted).
        now_fn: Current UTC time, used for session checks and timestamps.
        local_now_fn: Current local wall time, used for the cleanup schedule.
    """

    def __init__(
        self,
        provider: QuoteProvider,
        store: MarketDataStore,
        scorer: OpportunityScorer,
        rate_limiter: ApiRateLimiter,
        settings: SchedulerSettings,
        quotes: Broadcaster[Quote] | None = None,
        opportunities: Broadcaster[Opportunity] | None = None,
        now_fn: Callable[[], datetime] = utc_now,
        local_now_fn: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._provider = provider
        self._store = store
        self._scorer = scorer
        self._rate_limiter = rate_limiter
        self._settings = settings
        self.quotes: Broadcaster[Quote] = quotes or Broadcaster("quotes")
        self.opportunities: Broadcaster[Opportunity] = opportunities or Broadcaster(
            "opportunities"
        )
        self._now_fn = now_fn
        self._local_now_fn = local_now_fn

        self._watched: set[str] = set(settings.default_symbols)
        self._active: set[str] = set()
        self._symbols_lock = asyncio.Lock()

        self._handlers: dict[str, Callable[[], Awaitable[None]]] = {
            PRE_MARKET: self._collect_pre_market,
            MARKET_HOURS: self._collect_market_hours,
            OPPORTUNITY_SCAN: self._scan_opportunities,
            DISCOVERY: self._discover_symbols,
            CLEANUP: self._cleanup,
        }
        self._activity_locks = {name: asyncio.Lock() for name in ACTIVITIES}

        self._running = False
        self._loops: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._ticks: set[asyncio.Task] = set()  # type: ignore[type-arg]

    @property
    def is_running(self) -> bool:
        return self._running

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start all five activities in the background."""
        if self._running:
            logger.warning("scheduler_already_running")
            return
        self._running = True
        s = self._settings
        intervals = {
            PRE_MARKET: s.pre_market_interval_ms / 1000,
            MARKET_HOURS: s.market_hours_interval_ms / 1000,
            OPPORTUNITY_SCAN: s.opportunity_scan_interval_ms / 1000,
            DISCOVERY: s.discovery_interval_ms / 1000,
        }
        for name, interval in intervals.items():
            self._loops.append(asyncio.create_task(self._periodic(name, interval)))
        self._loops.append(asyncio.create_task(self._daily_cleanup()))
        logger.info(
            "scheduler_started",
            watched=len(self._watched),
            **{f"{name}_interval_s": interval for name, interval in intervals.items()},
        )

    async def stop(self) -> None:
        """Cancel every activity loop and in-flight tick."""
        self._running = False
        tasks = [*self._loops, *self._ticks]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._ticks.clear()
        logger.info("scheduler_stopped")

    async def _periodic(self, name: str, interval: float) -> None:
        while self._running:
            tick = asyncio.create_task(self.run_activity(name))
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.sleep(interval)

    async def _daily_cleanup(self) -> None:
        while self._running:
            delay = seconds_until(self._settings.cleanup_time, self._local_now_fn())
            logger.debug("cleanup_scheduled", in_seconds=round(delay))
            await asyncio.sleep(delay)
            await self.run_activity(CLEANUP)

    async def run_activity(self, name: str) -> bool:
        """Run one tick of an activity.

        Returns:
            False when the previous run of the same activity is still in
            progress and this tick was skipped, True otherwise.
        """
        handler = self._handlers[name]
        lock = self._activity_locks[name]
        if lock.locked():
            logger.debug("activity_tick_skipped", activity=name)
            return False

        async with lock:
            try:
                await handler()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("activity_failed", activity=name, exc_info=True)
        return True

    # ──────────────────────────────────────────────
    # Symbol sets
    # ──────────────────────────────────────────────

    async def add_symbol(self, symbol: str) -> None:
        async with self._symbols_lock:
            self._watched.add(symbol.upper())

    async def remove_symbol(self, symbol: str) -> None:
        """Stop watching a symbol (also drops it from the active set)."""
        async with self._symbols_lock:
            self._watched.discard(symbol.upper())
            self._active.discard(symbol.upper())

    async def get_watched_symbols(self) -> list[str]:
        async with self._symbols_lock:
            return sorted(self._watched)

    async def get_active_symbols(self) -> list[str]:
        async with self._symbols_lock:
            return sorted(self._active)

    # ──────────────────────────────────────────────
    # Activities
    # ──────────────────────────────────────────────

    async def _collect_pre_market(self) -> None:
        now = self._now_fn()
        if is_market_hours(now) or not is_pre_market(now):
            return
        symbols = await self.get_watched_symbols()
        count = await self._collect(symbols, pre_market=True)
        if count:
            logger.debug("pre_market_quotes_collected", count=count)

    async def _collect_market_hours(self) -> None:
        if not is_market_hours(self._now_fn()):
            return
        symbols = await self.get_active_symbols()
        count = await self._collect(symbols, pre_market=False)
        if count:
            logger.debug("market_hours_quotes_collected", count=count)

    async def _collect(self, symbols: list[str], pre_market: bool) -> int:
        if not symbols:
            return 0
        await self._rate_limiter.wait_for_market_data()
        quotes = await self._provider.get_quotes(symbols)
        if not quotes:
            return 0
        for quote in quotes:
            quote.is_pre_market = pre_market
        await self._store.write_quotes_batch(quotes)
        for quote in quotes:
            self.quotes.publish(quote)
        return len(quotes)

    async def _scan_opportunities(self) -> None:
        s = self._settings
        emitted = 0
        for sort, opportunity_type in _SCAN_PASSES:
            await self._rate_limiter.wait_for_market_data()
            movers = await self._provider.get_movers(s.scan_index, sort, s.scan_frequency)
            for quote in movers[: s.scan_top_n]:
                opportunity = self._scorer.evaluate(quote, opportunity_type)
                if opportunity is None:
                    continue
                await self._store.write_opportunity(opportunity)
                self.opportunities.publish(opportunity)
                await self.add_symbol(quote.symbol)
                emitted += 1

        await self._update_active_symbols()
        logger.info("opportunity_scan_complete", emitted=emitted)

    async def _update_active_symbols(self) -> None:
        now = self._now_fn()
        top = await self._store.read_top_movers(
            self._settings.active_candidates,
            is_pre_market(now),
            MoversSort.PERCENT_CHANGE_UP,
            now=now,
        )
        active = [q.symbol for q in top[: self._settings.active_symbol_count]]
        async with self._symbols_lock:
            self._active = set(active)
        logger.debug("active_symbols_updated", symbols=active)

    async def _discover_symbols(self) -> None:
        s = self._settings
        added = 0
        for index in s.discovery_indices:
            try:
                await self._rate_limiter.wait_for_market_data()
                movers = await self._provider.get_movers(index, MoversSort.VOLUME, 0)
            except ProviderError as e:
                logger.warning("discovery_index_failed", index=index, error=str(e))
                continue

            async with self._symbols_lock:
                for quote in movers[: s.discovery_top_n]:
                    if quote.symbol in self._watched:
                        continue
                    if self._scorer.passes_filters(quote):
                        self._watched.add(quote.symbol)
                        added += 1

        logger.info("discovery_complete", added=added, watched=len(self._watched))

    async def _cleanup(self) -> None:
        days = min(self._settings.data_retention_days, self._settings.max_data_retention_days)
        cutoff = self._now_fn() - timedelta(days=days)
        await self._store.delete_older_than(cutoff)
        logger.info("retention_cleanup_complete", retention_days=days)
