"""Sandbox trading simulator.

Core types and the execution engine are re-exported here. The replay loop
(tradescope.sandbox.replay) and the session API (tradescope.sandbox.service)
are imported from their own modules.
"""

from tradescope.sandbox.clock import ClockState, SandboxClock
from tradescope.sandbox.engine import SandboxExecutionEngine, compute_fill_price
from tradescope.sandbox.models import (
    BalanceSnapshot,
    ReplayConfig,
    SandboxPosition,
    SandboxSession,
    SandboxSettings,
    SandboxTimeStatus,
    SandboxTrade,
    SandboxTradeResult,
)

__all__ = [
    "BalanceSnapshot",
    "ClockState",
    "ReplayConfig",
    "SandboxClock",
    "SandboxExecutionEngine",
    "SandboxPosition",
    "SandboxSession",
    "SandboxSettings",
    "SandboxTimeStatus",
    "SandboxTrade",
    "SandboxTradeResult",
    "compute_fill_price",
]
