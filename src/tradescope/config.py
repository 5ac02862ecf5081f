"""Configuration system using pydantic-settings with environment variable loading."""

from datetime import time
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketSettings(BaseSettings):
    """Opportunity filter and scoring thresholds.

    Market-cap ranges are in millions of dollars. The large-cap bucket has
    no upper bound.
    """

    model_config = SettingsConfigDict(env_prefix="MARKET_")

    # Market-cap buckets
    enable_small_cap: bool = True
    enable_mid_cap: bool = True
    enable_large_cap: bool = True
    small_cap_min: Decimal = Decimal("300")  # $300M
    small_cap_max: Decimal = Decimal("2000")  # $2B
    mid_cap_min: Decimal = Decimal("2000")
    mid_cap_max: Decimal = Decimal("10000")  # $10B
    large_cap_min: Decimal = Decimal("10000")

    # Price filters
    min_price: Decimal = Decimal("1.00")
    max_price: Decimal = Decimal("10000.00")

    # Volume requirements
    min_volume: int = 100_000
    min_pre_market_volume: int = 50_000

    # Float requirements (shares). A float of 0 means the provider does not
    # report one; such quotes skip the float check unless require_float is set.
    min_float: Decimal = Decimal("1000000")
    max_float: Decimal = Decimal("1000000000")
    require_float: bool = False

    # Pre-market absolute percent-change band
    min_pre_market_increase: Decimal = Decimal("5.0")
    max_pre_market_increase: Decimal = Decimal("1000.0")

    # Emission threshold
    min_opportunity_score: Decimal = Decimal("70")


class SchedulerSettings(BaseSettings):
    """Polling cadences and retention for the market data scheduler."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    pre_market_interval_ms: int = 200  # 5x per second
    market_hours_interval_ms: int = 50  # 20x per second
    opportunity_scan_interval_ms: int = 60_000
    discovery_interval_ms: int = 3_600_000
    cleanup_time: time = time(2, 0)  # local time
    data_retention_days: int = 7
    max_data_retention_days: int = 547  # 18 months

    scan_index: str = "USDT"
    scan_frequency: int = 60
    scan_top_n: int = 50
    discovery_indices: list[str] = ["USDT", "USDC", "FDUSD"]
    discovery_top_n: int = 20
    active_candidates: int = 10
    active_symbol_count: int = 3
    # ccxt unified market symbols
    default_symbols: list[str] = [
        "BTC/USDT", "ETH/USDT", "SOL/USDT", "XRP/USDT", "BNB/USDT",
        "DOGE/USDT", "ADA/USDT", "AVAX/USDT", "LINK/USDT", "DOT/USDT",
    ]


class RateLimitSettings(BaseSettings):
    """Outbound request budgets for the quote provider."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    trading_per_minute: int = 120
    market_data_per_minute: int = 120
    overall_per_hour: int = 10_000


class ProviderSettings(BaseSettings):
    """Quote provider connection settings (ccxt exchange id)."""

    model_config = SettingsConfigDict(env_prefix="PROVIDER_")

    exchange_id: str = "binance"
    timeout_ms: int = 10_000
    # Quote currency used for movers when the index is not a market quote
    default_quote: str = "USDT"
    ohlcv_page_limit: int = 1000

    # CoinGecko market cap enrichment
    enable_market_caps: bool = True
    market_cap_ttl_seconds: int = 3600
    coingecko_api_key: str | None = None


class StorageSettings(BaseSettings):
    """SQLite persistence location."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/market.db"


class SandboxDefaults(BaseSettings):
    """Default values for new sandbox sessions and replays.

    slippage_percentage is in percent units: 0.1 means 0.1%.
    """

    model_config = SettingsConfigDict(env_prefix="SANDBOX_")

    initial_balance: Decimal = Decimal("100000")
    auto_advance_time: bool = True
    time_advance_interval_minutes: int = 1
    skip_weekends: bool = True
    skip_holidays: bool = True
    enable_slippage: bool = True
    slippage_percentage: Decimal = Decimal("0.1")
    enable_commissions: bool = False
    commission_per_trade: Decimal = Decimal("0")
    max_positions_per_symbol: int = 10_000
    playback_speed: int = 1
    minutes_interval: int = 1
    watched_symbols: list[str] = ["AAPL", "TSLA", "NVDA", "MSFT", "GOOGL"]


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    market: MarketSettings = MarketSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    provider: ProviderSettings = ProviderSettings()
    storage: StorageSettings = StorageSettings()
    sandbox: SandboxDefaults = SandboxDefaults()
