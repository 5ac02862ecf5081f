"""Custom exceptions for tradescope.

Trade rejections are not exceptions: they come back as failed
SandboxTradeResult values. These classes cover provider, data and
lookup failures.
"""


class TradescopeError(Exception):
    """Base exception for all tradescope errors."""


class ProviderError(TradescopeError):
    """Raised when the quote/history provider call fails."""


class NoDataLoadedError(TradescopeError):
    """Raised when a replay is requested without any candles loaded."""


class SessionNotFoundError(TradescopeError):
    """Raised when a sandbox session id is unknown."""


class StreamClosedError(TradescopeError):
    """Raised when waiting on a closed, drained stream subscription."""
