"""Tests for pipeline wiring and the run() lifecycle."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tradescope import main
from tradescope.config import AppSettings, StorageSettings
from tradescope.exceptions import ProviderError
from tradescope.provider.ccxt_provider import CcxtQuoteProvider
from tradescope.scanner.scheduler import MarketDataScheduler
from tradescope.storage.database import MarketDatabase


class TestBuildComponents:
    @pytest.mark.asyncio
    async def test_wires_every_component(self, app_settings: AppSettings) -> None:
        components = main._build_components(app_settings)

        assert set(components) == {
            "database", "store", "provider", "rate_limiter", "scorer", "scheduler",
        }
        assert isinstance(components["database"], MarketDatabase)
        assert isinstance(components["provider"], CcxtQuoteProvider)
        assert isinstance(components["scheduler"], MarketDataScheduler)
        assert not components["scheduler"].is_running
        assert components["provider"]._market_caps is not None
        await components["provider"].close()


class TestRun:
    @pytest.mark.asyncio
    async def test_shutdown_releases_resources(self, tmp_path: Path) -> None:
        components = {
            "database": AsyncMock(),
            "provider": AsyncMock(),
            "rate_limiter": MagicMock(),
            "scheduler": AsyncMock(),
        }
        settings = AppSettings(storage=StorageSettings(db_path=str(tmp_path / "market.db")))

        def _stop_immediately(stop_event: asyncio.Event) -> None:
            stop_event.set()

        with (
            patch.object(main, "AppSettings", return_value=settings),
            patch.object(main, "_build_components", return_value=components),
            patch.object(main, "_setup_signal_handlers", side_effect=_stop_immediately),
        ):
            await main.run()

        components["database"].connect.assert_awaited_once()
        components["provider"].connect.assert_awaited_once()
        components["scheduler"].start.assert_awaited_once()
        components["scheduler"].stop.assert_awaited_once()
        components["provider"].close.assert_awaited_once()
        components["database"].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_still_stops_scheduler(self) -> None:
        components = {
            "database": AsyncMock(),
            "provider": AsyncMock(),
            "rate_limiter": MagicMock(),
            "scheduler": AsyncMock(),
        }
        components["provider"].connect.side_effect = RuntimeError("exchange down")

        with (
            patch.object(main, "_build_components", return_value=components),
            patch.object(main, "_setup_signal_handlers"),
        ):
            with pytest.raises(RuntimeError):
                await main.run()

        components["scheduler"].start.assert_not_called()
        components["scheduler"].stop.assert_awaited_once()
        components["database"].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_provider_error_on_connect_keeps_running(self) -> None:
        components = {
            "database": AsyncMock(),
            "provider": AsyncMock(),
            "rate_limiter": MagicMock(),
            "scheduler": AsyncMock(),
        }
        components["provider"].connect.side_effect = ProviderError("load_markets failed")

        def _stop_immediately(stop_event: asyncio.Event) -> None:
            stop_event.set()

        with (
            patch.object(main, "_build_components", return_value=components),
            patch.object(main, "_setup_signal_handlers", side_effect=_stop_immediately),
        ):
            await main.run()

        components["scheduler"].start.assert_awaited_once()
        components["scheduler"].stop.assert_awaited_once()
        components["provider"].close.assert_awaited_once()
