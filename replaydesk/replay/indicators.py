"""Technical indicators — SMA, EMA, RSI over a visible candle prefix.

Pure functions, no I/O, no hidden state: the same prefix always yields
bit-identical output.  Insufficient data yields an empty series rather
than an error.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence

from replaydesk.errors import ConfigurationError
from replaydesk.market.models import Candle


class IndicatorKind(str, Enum):
    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"


@dataclass(frozen=True)
class IndicatorPoint:
    """One point of a derived series, stamped with its candle's time."""

    time: datetime
    value: float

    def to_dict(self) -> dict:
        return {"time": self.time.isoformat(), "value": self.value}


DEFAULT_PERIODS: dict[IndicatorKind, int] = {
    IndicatorKind.SMA: 20,
    IndicatorKind.EMA: 20,
    IndicatorKind.RSI: 14,
}


def _check_period(period: int) -> None:
    if period < 1:
        raise ConfigurationError(
            f"Indicator period must be >= 1, got {period}", field="period",
        )


# ── Moving averages ──────────────────────────────────────────────────────


def moving_average(candles: Sequence[Candle], period: int) -> list[IndicatorPoint]:
    """Simple moving average of closes.

    For each index ``i`` from ``period - 1`` to ``n - 1`` the value is the
    mean of closes ``[i - period + 1, i]``.  Output length is
    ``max(0, n - period + 1)``.  Uses a running sum, so one pass.
    """
    _check_period(period)
    n = len(candles)
    if n < period:
        return []

    points: list[IndicatorPoint] = []
    window_sum = 0.0
    for i in range(n):
        window_sum += candles[i].close
        if i >= period:
            window_sum -= candles[i - period].close
        if i >= period - 1:
            points.append(IndicatorPoint(candles[i].time, window_sum / period))
    return points


def ema(candles: Sequence[Candle], period: int) -> list[IndicatorPoint]:
    """Exponential Moving Average.

    ``EMA_today = close × k + EMA_yesterday × (1 - k)`` with
    ``k = 2 / (period + 1)``, seeded with the SMA of the first *period*
    closes.  The first point sits at index ``period - 1``.
    """
    _check_period(period)
    n = len(candles)
    if n < period:
        return []

    k = 2.0 / (period + 1)
    value = sum(c.close for c in candles[:period]) / period
    points = [IndicatorPoint(candles[period - 1].time, value)]
    for i in range(period, n):
        value = candles[i].close * k + value * (1 - k)
        points.append(IndicatorPoint(candles[i].time, value))
    return points


# ── RSI ──────────────────────────────────────────────────────────────────


def rsi(candles: Sequence[Candle], period: int = 14) -> list[IndicatorPoint]:
    """Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RSI = 100 - 100 / (1 + avg_gain / avg_loss), or 100 when
           avg_loss is zero.

    Requires at least ``period + 1`` candles, otherwise returns ``[]``.
    The first point is stamped at candle index *period*.
    """
    _check_period(period)
    n = len(candles)
    if n < period + 1:
        return []

    deltas = [candles[i].close - candles[i - 1].close for i in range(1, n)]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    points = [IndicatorPoint(candles[period].time, _rsi_value(avg_gain, avg_loss))]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # deltas are offset by one candle
        points.append(
            IndicatorPoint(candles[i + 1].time, _rsi_value(avg_gain, avg_loss))
        )
    return points


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


# ── Dispatch ─────────────────────────────────────────────────────────────


def calculate_indicator(
    kind: IndicatorKind | str,
    candles: Sequence[Candle],
    period: int | None = None,
) -> list[IndicatorPoint]:
    """Compute the indicator *kind* over *candles*.

    Raises ``ConfigurationError`` for an unknown kind or a period < 1.
    """
    try:
        kind = IndicatorKind(kind)
    except ValueError:
        raise ConfigurationError(
            f"Unknown indicator '{kind}'. "
            f"Available: {', '.join(k.value for k in IndicatorKind)}",
            field="kind",
        ) from None

    if period is None:
        period = DEFAULT_PERIODS[kind]
    if kind is IndicatorKind.SMA:
        return moving_average(candles, period)
    if kind is IndicatorKind.EMA:
        return ema(candles, period)
    return rsi(candles, period)
