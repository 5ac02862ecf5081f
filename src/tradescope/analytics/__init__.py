"""Performance analytics for sandbox sessions."""

from tradescope.analytics.metrics import (
    DailyPerformance,
    SymbolPerformance,
    max_drawdown,
    sharpe_ratio,
    win_rate,
)
from tradescope.analytics.report import (
    PerformanceReport,
    build_performance_report,
    format_report,
)

__all__ = [
    "DailyPerformance",
    "PerformanceReport",
    "SymbolPerformance",
    "build_performance_report",
    "format_report",
    "max_drawdown",
    "sharpe_ratio",
    "win_rate",
]
