"""Command-line sandbox replay.

Replays one trading day through a sandbox session with a buy-and-hold
rule: buy a fixed quantity of each symbol on its first replayed quote,
liquidate everything when the replay completes, then print the
performance report.
"""

import argparse
import asyncio
import json
import time
from datetime import date, datetime, timedelta
from datetime import time as clock_time

from tradescope.analytics.report import PerformanceReport, format_report
from tradescope.config import AppSettings
from tradescope.data.sources import DataSourceKind
from tradescope.exceptions import NoDataLoadedError, ProviderError
from tradescope.logging import get_logger, setup_logging
from tradescope.market_hours import at_eastern
from tradescope.models import TradeAction
from tradescope.provider.ccxt_provider import CcxtQuoteProvider
from tradescope.provider.rate_limiter import ApiRateLimiter
from tradescope.sandbox.models import ReplayConfig
from tradescope.sandbox.service import SandboxService

logger = get_logger(__name__)

_QUOTE_WAIT_SECONDS = 0.5


async def run_sandbox_replay(
    symbols: list[str],
    day: date,
    start: clock_time = clock_time(9, 30),
    end: clock_time = clock_time(10, 0),
    quantity: int = 10,
    speed: int = 100,
    source: DataSourceKind = DataSourceKind.SYNTHETIC,
    settings: AppSettings | None = None,
) -> PerformanceReport:
    """Run a buy-and-hold replay and return its performance report.

    Raises:
        NoDataLoadedError: If no candles could be loaded for any symbol.
    """
    if settings is None:
        settings = AppSettings()

    started = time.monotonic()
    provider = None
    if source != DataSourceKind.SYNTHETIC:
        provider = CcxtQuoteProvider(settings.provider)
        try:
            await provider.connect()
        except ProviderError as e:
            logger.warning("sandbox_provider_unavailable", error=str(e))

    service = SandboxService(
        settings.sandbox,
        provider=provider,
        rate_limiter=ApiRateLimiter(settings.rate_limit),
    )
    # The session outlives the replay by one bar so positions can be
    # liquidated at the last replayed price.
    session = await service.create_session(
        user_id=0,
        start_time=at_eastern(day, start),
        end_time=at_eastern(day, end) + timedelta(minutes=settings.sandbox.minutes_interval),
        watched_symbols=symbols,
    )
    subscription = service.quotes.subscribe()

    config = ReplayConfig(
        symbols=symbols,
        source=source,
        historical_date=day,
        start_time=start,
        end_time=end,
        playback_speed=speed,
        pause_on_start=False,
        minutes_interval=settings.sandbox.minutes_interval,
    )
    try:
        if not await service.start_replay(session.session_id, config):
            raise NoDataLoadedError(f"No data loaded for {', '.join(symbols)} on {day}")

        replay = service.get_replay(session.session_id)
        bought: set[str] = set()
        while replay.is_running:
            try:
                quote = await asyncio.wait_for(subscription.get(), _QUOTE_WAIT_SECONDS)
            except TimeoutError:
                continue
            if quote.symbol in bought:
                continue
            result = await service.execute_trade(
                session.session_id, quote.symbol, TradeAction.BUY, quantity
            )
            bought.add(quote.symbol)
            if not result.success:
                logger.warning(
                    "sandbox_buy_rejected", symbol=quote.symbol, reason=result.error_message
                )

        for position in service.get_positions(session.session_id):
            await service.execute_trade(
                session.session_id, position.symbol, TradeAction.SELL, position.quantity
            )

        report = service.get_performance_report(session.session_id)
    finally:
        subscription.close()
        await service.end_session(session.session_id)
        await service.close()
        if provider is not None:
            await provider.close()

    logger.info(
        "sandbox_cli_summary",
        symbols=symbols,
        day=day.isoformat(),
        equity=str(report.equity),
        total_return=str(report.total_return),
        total_trades=report.total_trades,
        win_rate=str(report.win_rate) if report.win_rate is not None else "N/A",
        max_drawdown=str(report.max_drawdown),
        elapsed_seconds=round(time.monotonic() - started, 2),
    )
    return report


def _parse_time(value: str) -> clock_time:
    return datetime.strptime(value, "%H:%M").time()


def main() -> None:
    """Synchronous entry point."""
    parser = argparse.ArgumentParser(description="Replay a trading day in the sandbox")
    parser.add_argument("symbols", nargs="+", help="Symbols to replay, e.g. AAPL TSLA")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Trading day as YYYY-MM-DD (default: today)",
    )
    parser.add_argument(
        "--start", type=_parse_time, default=clock_time(9, 30), help="HH:MM Eastern"
    )
    parser.add_argument(
        "--end", type=_parse_time, default=clock_time(10, 0), help="HH:MM Eastern"
    )
    parser.add_argument("--quantity", type=int, default=10, help="Shares bought per symbol")
    parser.add_argument("--speed", type=int, default=100, help="Playback speed 1-100")
    parser.add_argument(
        "--source",
        choices=[DataSourceKind.SYNTHETIC.value, DataSourceKind.HISTORICAL_MINUTE.value],
        default=DataSourceKind.SYNTHETIC.value,
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    settings = AppSettings()
    setup_logging(settings.log_level)

    report = asyncio.run(
        run_sandbox_replay(
            symbols=[s.upper() for s in args.symbols],
            day=args.date or date.today(),
            start=args.start,
            end=args.end,
            quantity=args.quantity,
            speed=args.speed,
            source=DataSourceKind(args.source),
            settings=settings,
        )
    )
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_report(report))


if __name__ == "__main__":
    main()
