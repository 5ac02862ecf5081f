"""Entry point for the market data pipeline.

Wires the quote provider, storage, scorer and scheduler together and runs
the scheduler until SIGINT/SIGTERM.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. MarketDatabase + MarketDataStore (SQLite persistence)
4. MarketCapService + CcxtQuoteProvider (quotes, history, movers)
5. ApiRateLimiter (provider request budgets)
6. OpportunityScorer (filters and scoring)
7. MarketDataScheduler (collection, scanning, discovery, cleanup)
"""

import asyncio
import signal
from typing import Any

from tradescope.config import AppSettings
from tradescope.exceptions import ProviderError
from tradescope.logging import get_logger, setup_logging
from tradescope.provider.ccxt_provider import CcxtQuoteProvider
from tradescope.provider.market_cap import MarketCapService
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.scanner.scheduler import MarketDataScheduler
from tradescope.scanner.scorer import OpportunityScorer
from tradescope.storage.database import MarketDatabase
from tradescope.storage.store import MarketDataStore

RATE_LIMIT_STATUS_INTERVAL = 300.0


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all pipeline components from settings.

    Note: Does NOT connect the database or provider -- that happens in run().
    """
    database = MarketDatabase(settings.storage.db_path)
    store = MarketDataStore(database)
    market_caps = None
    if settings.provider.enable_market_caps:
        market_caps = MarketCapService(
            cache_ttl_seconds=settings.provider.market_cap_ttl_seconds,
            api_key=settings.provider.coingecko_api_key,
        )
    provider = CcxtQuoteProvider(settings.provider, market_caps=market_caps)
    rate_limiter = ApiRateLimiter(settings.rate_limit)
    scorer = OpportunityScorer(settings.market)
    scheduler = MarketDataScheduler(
        provider=provider,
        store=store,
        scorer=scorer,
        rate_limiter=rate_limiter,
        settings=settings.scheduler,
    )
    return {
        "database": database,
        "store": store,
        "provider": provider,
        "rate_limiter": rate_limiter,
        "scorer": scorer,
        "scheduler": scheduler,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM. Call with the loop running."""
    logger = get_logger("tradescope.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def _log_rate_limits(rate_limiter: ApiRateLimiter) -> None:
    while True:
        await asyncio.sleep(RATE_LIMIT_STATUS_INTERVAL)
        rate_limiter.log_status()


async def run() -> None:
    """Run the pipeline until a shutdown signal arrives."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("tradescope.main")

    # 3-7. Build all components
    components = _build_components(settings)
    scheduler: MarketDataScheduler = components["scheduler"]

    stop_event = asyncio.Event()
    _setup_signal_handlers(stop_event)

    logger.info(
        "tradescope_starting",
        exchange=settings.provider.exchange_id,
        db_path=settings.storage.db_path,
        watched=len(settings.scheduler.default_symbols),
    )

    status_task = None
    try:
        await components["database"].connect()
        try:
            await components["provider"].connect()
        except ProviderError as e:
            # Markets are loaded again on the first movers query
            logger.warning("provider_connect_failed", error=str(e))
        await scheduler.start()
        status_task = asyncio.create_task(_log_rate_limits(components["rate_limiter"]))
        await stop_event.wait()
    finally:
        if status_task is not None:
            status_task.cancel()
        await scheduler.stop()
        await components["provider"].close()
        await components["database"].close()
        logger.info("tradescope_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
