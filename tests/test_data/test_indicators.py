"""Tests for technical indicators.

All test values use Decimal (project convention).
"""

from decimal import Decimal

from tradescope.data.indicators import (
    compute_bollinger,
    compute_ema,
    compute_macd,
    compute_rsi,
)


class TestComputeEma:
    def test_empty_input(self) -> None:
        assert compute_ema([], 12) == []

    def test_constant_series_is_flat(self) -> None:
        values = [Decimal("10")] * 20
        assert all(v == Decimal("10") for v in compute_ema(values, 5))

    def test_recursive_formula(self) -> None:
        # alpha = 2 / (3 + 1) = 0.5
        result = compute_ema([Decimal("10"), Decimal("20"), Decimal("30")], 3)
        assert result == [Decimal("10"), Decimal("15"), Decimal("22.5")]


class TestComputeMacd:
    def test_constant_series_has_zero_macd(self) -> None:
        macd, signal, histogram = compute_macd([Decimal("50")] * 40)

        assert len(macd) == len(signal) == len(histogram) == 40
        assert all(m == 0 for m in macd)
        assert all(h == 0 for h in histogram)

    def test_rising_series_has_positive_macd(self) -> None:
        closes = [Decimal(i) for i in range(1, 41)]
        macd, _, _ = compute_macd(closes)
        assert macd[-1] > 0


class TestComputeRsi:
    def test_none_until_first_full_window(self) -> None:
        closes = [Decimal(i) for i in range(20)]
        rsi = compute_rsi(closes, period=14)

        assert rsi[:14] == [None] * 14
        assert rsi[14] is not None

    def test_only_gains_gives_100(self) -> None:
        closes = [Decimal(i) for i in range(20)]
        assert compute_rsi(closes)[-1] == Decimal("100")

    def test_only_losses_gives_0(self) -> None:
        closes = [Decimal(100 - i) for i in range(20)]
        assert compute_rsi(closes)[-1] == Decimal("0")

    def test_short_series_all_none(self) -> None:
        assert compute_rsi([Decimal("1")] * 5) == [None] * 5


class TestComputeBollinger:
    def test_constant_series_collapses_bands(self) -> None:
        bands = compute_bollinger([Decimal("10")] * 25)

        assert bands[18] is None
        upper, middle, lower = bands[19]  # type: ignore[misc]
        assert upper == middle == lower == Decimal("10")

    def test_bands_are_symmetric(self) -> None:
        closes = [Decimal(i % 5) for i in range(20)]
        upper, middle, lower = compute_bollinger(closes)[-1]  # type: ignore[misc]

        assert middle == Decimal("2")
        assert upper - middle == middle - lower
        assert upper > middle
