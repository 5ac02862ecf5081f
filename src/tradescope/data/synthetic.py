"""Deterministic synthetic minute candles for sandbox replay.

Each (symbol, date) pair seeds its own random.Random from a CRC32 of the
pair, so two requests for the same symbol and date are bit-identical
across runs and processes (Python's built-in hash() is salted per process
and is not used).
"""

import random
import zlib
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from tradescope.market_hours import MARKET_CLOSE, MARKET_OPEN, at_eastern
from tradescope.models import Candle

#: Per-bar volatility: drift and noise are each (u - 0.5) * VOLATILITY.
VOLATILITY = Decimal("0.002")
#: Highs and lows extend beyond the open/close by up to this fraction.
WICK = Decimal("0.001")
MIN_VOLUME = 100_000
MAX_VOLUME = 1_000_000

_PRICE_PLACES = Decimal("0.0001")


def _stable_hash(text: str) -> int:
    return zlib.crc32(text.encode("utf-8"))


def base_price(symbol: str) -> Decimal:
    """Starting price for a symbol: 100 + (stable hash mod 500)."""
    return Decimal(100 + _stable_hash(symbol) % 500)


def _uniform(rng: random.Random) -> Decimal:
    # Six decimal places keep the Decimal arithmetic short and exact.
    return Decimal(rng.randrange(1_000_000)) / Decimal(1_000_000)


def generate_session(symbol: str, day: date, interval_minutes: int = 1) -> list[Candle]:
    """Random-walk bars from 09:30 through 16:00 Eastern inclusive."""
    if interval_minutes < 1:
        raise ValueError("interval_minutes must be at least 1")

    rng = random.Random(_stable_hash(f"{symbol}|{day.isoformat()}"))
    current: datetime = at_eastern(day, MARKET_OPEN)
    end = at_eastern(day, MARKET_CLOSE)
    step = timedelta(minutes=interval_minutes)
    previous_close = base_price(symbol)

    candles: list[Candle] = []
    while current <= end:
        drift = (_uniform(rng) - Decimal("0.5")) * VOLATILITY
        noise = (_uniform(rng) - Decimal("0.5")) * VOLATILITY

        open_ = (previous_close * (1 + drift)).quantize(_PRICE_PLACES, ROUND_HALF_UP)
        close = (open_ * (1 + noise)).quantize(_PRICE_PLACES, ROUND_HALF_UP)
        high = (max(open_, close) * (1 + _uniform(rng) * WICK)).quantize(
            _PRICE_PLACES, ROUND_HALF_UP
        )
        low = (min(open_, close) * (1 - _uniform(rng) * WICK)).quantize(
            _PRICE_PLACES, ROUND_HALF_UP
        )

        candles.append(
            Candle(
                symbol=symbol,
                timestamp=current,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=rng.randrange(MIN_VOLUME, MAX_VOLUME),
            )
        )
        previous_close = close
        current += step

    return candles
