"""Technical indicators over candle closes: EMA, MACD, RSI and Bollinger Bands.

Uses Decimal arithmetic with quantize to prevent precision explosion.
Indicator series are aligned with their input; positions without enough
history hold None.

CRITICAL: All computations use Decimal. Never use float.
"""

from dataclasses import replace
from decimal import Decimal

from tradescope.models import Candle

#: Precision limit for indicator intermediate results (8 decimal places).
_QUANTIZE = Decimal("0.00000001")

EMA_FAST_SPAN = 12
EMA_SLOW_SPAN = 26
MACD_SIGNAL_SPAN = 9
RSI_PERIOD = 14
BOLLINGER_PERIOD = 20
BOLLINGER_STD_DEVS = Decimal("2")


def compute_ema(values: list[Decimal], span: int) -> list[Decimal]:
    """Compute Exponential Moving Average over a list of Decimal values.

    Uses the standard recursive formula:
        alpha = 2 / (span + 1)
        EMA_t = alpha * value_t + (1 - alpha) * EMA_{t-1}

    First EMA value = first input value.

    Returns:
        List of EMA values, same length as input. Empty list if input is empty.
    """
    if not values:
        return []

    alpha = Decimal("2") / (Decimal(span) + Decimal("1"))
    one_minus_alpha = Decimal("1") - alpha

    ema = [values[0].quantize(_QUANTIZE)]
    for v in values[1:]:
        ema.append((alpha * v + one_minus_alpha * ema[-1]).quantize(_QUANTIZE))
    return ema


def compute_macd(
    closes: list[Decimal],
    fast: int = EMA_FAST_SPAN,
    slow: int = EMA_SLOW_SPAN,
    signal: int = MACD_SIGNAL_SPAN,
) -> tuple[list[Decimal], list[Decimal], list[Decimal]]:
    """Return (macd, signal, histogram) series aligned with ``closes``."""
    fast_ema = compute_ema(closes, fast)
    slow_ema = compute_ema(closes, slow)
    macd = [f - s for f, s in zip(fast_ema, slow_ema)]
    signal_line = compute_ema(macd, signal)
    histogram = [m - s for m, s in zip(macd, signal_line)]
    return macd, signal_line, histogram


def compute_rsi(closes: list[Decimal], period: int = RSI_PERIOD) -> list[Decimal | None]:
    """Relative Strength Index with Wilder smoothing.

    The first ``period`` positions are None. A window with no losses
    yields 100.
    """
    result: list[Decimal | None] = [None] * len(closes)
    if len(closes) <= period:
        return result

    gains = Decimal("0")
    losses = Decimal("0")
    for prev, cur in zip(closes[:period], closes[1 : period + 1]):
        delta = cur - prev
        if delta > 0:
            gains += delta
        else:
            losses -= delta
    avg_gain = gains / period
    avg_loss = losses / period
    result[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, len(closes)):
        delta = closes[i] - closes[i - 1]
        gain = delta if delta > 0 else Decimal("0")
        loss = -delta if delta < 0 else Decimal("0")
        avg_gain = ((avg_gain * (period - 1) + gain) / period).quantize(_QUANTIZE)
        avg_loss = ((avg_loss * (period - 1) + loss) / period).quantize(_QUANTIZE)
        result[i] = _rsi_value(avg_gain, avg_loss)
    return result


def _rsi_value(avg_gain: Decimal, avg_loss: Decimal) -> Decimal:
    if avg_loss == 0:
        return Decimal("100")
    rs = avg_gain / avg_loss
    return (Decimal("100") - Decimal("100") / (Decimal("1") + rs)).quantize(_QUANTIZE)


def compute_bollinger(
    closes: list[Decimal],
    period: int = BOLLINGER_PERIOD,
    num_std: Decimal = BOLLINGER_STD_DEVS,
) -> list[tuple[Decimal, Decimal, Decimal] | None]:
    """Bollinger Bands (upper, middle, lower) using the population stdev.

    Positions before the first full window are None.
    """
    bands: list[tuple[Decimal, Decimal, Decimal] | None] = [None] * len(closes)
    for i in range(period - 1, len(closes)):
        window = closes[i - period + 1 : i + 1]
        mean = sum(window, Decimal("0")) / period
        variance = sum(((c - mean) ** 2 for c in window), Decimal("0")) / period
        std = variance.sqrt()
        bands[i] = (
            (mean + num_std * std).quantize(_QUANTIZE),
            mean.quantize(_QUANTIZE),
            (mean - num_std * std).quantize(_QUANTIZE),
        )
    return bands


def enrich_candles(candles: list[Candle]) -> list[Candle]:
    """Return copies of ``candles`` (one symbol, ascending) with indicators set."""
    if not candles:
        return []

    closes = [c.close for c in candles]
    ema12 = compute_ema(closes, EMA_FAST_SPAN)
    ema26 = compute_ema(closes, EMA_SLOW_SPAN)
    macd, signal_line, histogram = compute_macd(closes)
    rsi = compute_rsi(closes)
    bollinger = compute_bollinger(closes)

    enriched = []
    for i, candle in enumerate(candles):
        band = bollinger[i]
        enriched.append(
            replace(
                candle,
                ema12=ema12[i],
                ema26=ema26[i],
                macd=macd[i],
                macd_signal=signal_line[i],
                macd_histogram=histogram[i],
                rsi=rsi[i],
                bollinger_upper=band[0] if band else None,
                bollinger_middle=band[1] if band else None,
                bollinger_lower=band[2] if band else None,
            )
        )
    return enriched
