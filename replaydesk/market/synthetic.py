"""Synthetic candle generator — deterministic random walk per instrument.

Used when the market data provider is unavailable so a backtest session
can always be replayed offline.  The walk is seeded by the instrument
string: the same instrument always produces the same price path.
"""

import random
from datetime import datetime, timezone
from typing import Optional

from replaydesk.market.instruments import base_price, price_precision
from replaydesk.market.models import Candle, CandleSeries, interval_duration

# Per-bar step size as a fraction of the instrument's anchor price
_VOLATILITY = 0.002
_MIN_VOLUME = 1000
_MAX_VOLUME = 11000


def generate_series(
    instrument: str,
    interval: str,
    limit: int,
    end: Optional[datetime] = None,
) -> CandleSeries:
    """Generate *limit* synthetic candles ending at *end*.

    Args:
        instrument: Instrument code; also the random seed.
        interval: Bar interval (e.g. ``"1h"``).
        limit: Number of candles.
        end: Timestamp of the last bar.  Defaults to now, floored to the
             interval.

    Returns:
        A ``CandleSeries`` with ``source="synthetic"``.
    """
    step = interval_duration(interval)
    if end is None:
        end = _floor_to_interval(datetime.now(timezone.utc), step.total_seconds())

    rng = random.Random(instrument)
    precision = price_precision(instrument)
    anchor = base_price(instrument)
    unit = anchor * _VOLATILITY
    floor = anchor * 0.01

    level = anchor
    candles: list[Candle] = []
    for i in range(max(0, limit)):
        level = max(level + (rng.random() - 0.5) * 2 * unit, floor)
        open_ = level
        close = max(open_ + (rng.random() - 0.5) * unit, floor)
        high = max(open_, close) + rng.random() * unit * 0.5
        low = max(min(open_, close) - rng.random() * unit * 0.5, floor * 0.5)
        volume = float(rng.randrange(_MIN_VOLUME, _MAX_VOLUME))

        candles.append(
            Candle(
                time=end - step * (limit - 1 - i),
                open=round(open_, precision),
                high=round(high, precision),
                low=round(low, precision),
                close=round(close, precision),
                volume=volume,
            )
        )

    return CandleSeries(
        candles, instrument=instrument, interval=interval, source="synthetic",
    )


def _floor_to_interval(moment: datetime, seconds: float) -> datetime:
    ts = moment.timestamp()
    return datetime.fromtimestamp(ts - ts % seconds, tz=timezone.utc)
