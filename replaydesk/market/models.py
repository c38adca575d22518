"""Market data models — candles and the immutable series the replay reads."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional, overload

from replaydesk.errors import ConfigurationError


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.

    Rejects bars whose high/low do not contain the open and close.
    """

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    def __post_init__(self) -> None:
        if self.low > min(self.open, self.close):
            raise ValueError(
                f"Candle at {self.time}: low {self.low} above open/close"
            )
        if self.high < max(self.open, self.close):
            raise ValueError(
                f"Candle at {self.time}: high {self.high} below open/close"
            )

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


class CandleSeries:
    """Time-ordered, immutable sequence of candles for one instrument/interval.

    Args:
        candles: Bars in strictly increasing ``time`` order.
        instrument: Instrument code, e.g. ``"EURUSD"``.
        interval: Bar interval, e.g. ``"1h"``.
        source: ``"provider"`` or ``"synthetic"``.

    Raises ``ValueError`` when timestamps are not strictly increasing.
    """

    def __init__(
        self,
        candles: Iterable[Candle],
        instrument: str = "",
        interval: str = "",
        source: str = "provider",
    ) -> None:
        bars = tuple(candles)
        for prev, cur in zip(bars, bars[1:]):
            if cur.time <= prev.time:
                raise ValueError(
                    f"Candle times must be strictly increasing: "
                    f"{prev.time} then {cur.time}"
                )
        self._candles = bars
        self.instrument = instrument
        self.interval = interval
        self.source = source

    @classmethod
    def from_candles(
        cls,
        candles: Iterable[Candle],
        instrument: str = "",
        interval: str = "",
        source: str = "provider",
    ) -> "CandleSeries":
        """Build a series from unordered bars.

        Sorts by time and drops duplicate timestamps (the last bar seen
        for a timestamp wins).
        """
        by_time: dict[datetime, Candle] = {}
        for c in candles:
            by_time[c.time] = c
        ordered = [by_time[t] for t in sorted(by_time)]
        return cls(ordered, instrument=instrument, interval=interval, source=source)

    # ── Sequence protocol ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    @overload
    def __getitem__(self, item: int) -> Candle: ...

    @overload
    def __getitem__(self, item: slice) -> tuple[Candle, ...]: ...

    def __getitem__(self, item):
        return self._candles[item]

    def __repr__(self) -> str:
        return (
            f"CandleSeries(instrument={self.instrument!r}, "
            f"interval={self.interval!r}, source={self.source!r}, "
            f"len={len(self)})"
        )

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def candles(self) -> tuple[Candle, ...]:
        return self._candles

    def prefix(self, index: int) -> tuple[Candle, ...]:
        """Visible prefix ``series[0..index]`` inclusive; empty for ``index < 0``."""
        if index < 0:
            return ()
        return self._candles[: index + 1]


# ── Interval metadata ────────────────────────────────────────────────────

INTERVAL_DURATIONS: dict[str, timedelta] = {
    "1min": timedelta(minutes=1),
    "5min": timedelta(minutes=5),
    "15min": timedelta(minutes=15),
    "30min": timedelta(minutes=30),
    "45min": timedelta(minutes=45),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "1day": timedelta(days=1),
    "1week": timedelta(weeks=1),
    "1month": timedelta(days=30),
}


def interval_duration(interval: str) -> timedelta:
    """Return the bar length for *interval*.

    Raises ``ConfigurationError`` for unsupported intervals.
    """
    try:
        return INTERVAL_DURATIONS[interval]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported interval '{interval}'. "
            f"Available: {', '.join(INTERVAL_DURATIONS)}",
            field="interval",
        ) from None
