"""ReplayDesk — backtest session (replay orchestration).

Binds one candle series, one playback controller, one ledger and the
indicator settings into a single object.  Every cursor move recomputes
the indicator series over the visible prefix and, when enabled, fills
stop-loss / take-profit levels touched by the newly revealed candles.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from replaydesk.backtest.stats import PerformanceSummary, calculate_performance, equity_curve
from replaydesk.errors import InvalidCursorState, NoCurrentPrice
from replaydesk.ledger.ledger import Ledger
from replaydesk.ledger.models import LedgerEvent, Side, SimulatedTrade
from replaydesk.ledger.stops import check_exit
from replaydesk.market.instruments import round_money, round_price
from replaydesk.market.models import Candle, CandleSeries
from replaydesk.replay.indicators import (
    DEFAULT_PERIODS,
    IndicatorKind,
    IndicatorPoint,
    calculate_indicator,
)
from replaydesk.replay.playback import PlaybackController, ReplayCursor, Sleep

logger = logging.getLogger("replaydesk.session")


@dataclass(frozen=True)
class SessionEvent:
    """Something a persistence or presentation collaborator may care about."""

    kind: str  # trade_opened, trade_closed, cursor_moved, playback_finished
    session_id: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "session_id": self.session_id, **self.payload}


class BacktestSession:
    """A user's replay of one instrument with its simulated trades.

    Args:
        series: Candles to replay.
        starting_balance: Balance before any trade.
        name: Display name.
        session_id: Identifier; generated when omitted.
        base_period: Seconds per playback tick at 1x speed.
        speed_multiplier: Initial playback speed.
        indicator: Indicator derived over the visible prefix.
        indicator_period: Period for *indicator*; its default when omitted.
        enforce_stops: Fill stop-loss / take-profit levels automatically.
        description: Free-form notes.
        sleep: Sleep used by the playback tick task.
    """

    def __init__(
        self,
        series: CandleSeries,
        starting_balance: float,
        name: str = "",
        session_id: Optional[str] = None,
        base_period: float = 1.0,
        speed_multiplier: float = 1.0,
        indicator: IndicatorKind | str = IndicatorKind.SMA,
        indicator_period: Optional[int] = None,
        enforce_stops: bool = False,
        description: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if starting_balance <= 0:
            raise ValueError(
                f"starting_balance must be positive, got {starting_balance}"
            )
        self.id = session_id or uuid.uuid4().hex
        self.name = name or f"{series.instrument} {series.interval}".strip()
        self.description = description
        self.created_at = datetime.now(timezone.utc)
        self.enforce_stops = enforce_stops

        self._base_period = base_period
        self._sleep = sleep
        self._listeners: list[Callable[[SessionEvent], None]] = []
        self._closed = False

        self._series = series
        self._controller = self._build_controller(series, speed_multiplier)
        self._last_index = self._controller.index

        self._ledger = Ledger(starting_balance, cursor=self, instrument=series.instrument)
        self._ledger.subscribe(self._on_ledger_event)

        self._indicator = IndicatorKind(indicator)
        if indicator_period is None:
            indicator_period = DEFAULT_PERIODS[self._indicator]
        self._indicator_period = indicator_period
        self._indicator_points: list[IndicatorPoint] = []
        self._recompute_indicator()

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def series(self) -> CandleSeries:
        return self._series

    @property
    def instrument(self) -> str:
        return self._series.instrument

    @property
    def interval(self) -> str:
        return self._series.interval

    @property
    def controller(self) -> PlaybackController:
        return self._controller

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def starting_balance(self) -> float:
        return self._ledger.starting_balance

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_index(self) -> int:
        return self._controller.index

    @property
    def current_candle(self) -> Optional[Candle]:
        index = self._controller.index
        if index < 0:
            return None
        return self._series[index]

    @property
    def visible_candles(self) -> tuple[Candle, ...]:
        return self._series.prefix(self._controller.index)

    @property
    def cursor(self) -> ReplayCursor:
        return self._controller.cursor()

    # ── Events ───────────────────────────────────────────────────────────

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Register a callback for every ``SessionEvent``."""
        self._listeners.append(listener)

    def _emit(self, kind: str, **payload) -> None:
        event = SessionEvent(kind=kind, session_id=self.id, payload=payload)
        for listener in self._listeners:
            listener(event)

    def _on_ledger_event(self, event: LedgerEvent) -> None:
        self._emit(event.kind, trade=event.trade.to_dict())

    # ── Playback ─────────────────────────────────────────────────────────

    def play(self) -> bool:
        return self._controller.play()

    def pause(self) -> None:
        self._controller.pause()

    def step(self) -> int:
        return self._controller.step()

    def step_back(self) -> int:
        return self._controller.step_back()

    def seek(self, position: float) -> int:
        return self._controller.seek(position)

    def set_speed(self, multiplier: float) -> None:
        self._controller.set_speed(multiplier)

    def reset(self) -> None:
        """Rewind to the first candle and discard every trade."""
        self._controller.reset()
        self._ledger.clear()
        self._last_index = self._controller.index
        self._recompute_indicator()
        logger.info("Session '%s' reset.", self.id)

    async def wait_finished(self) -> None:
        await self._controller.wait_finished()

    def close(self) -> None:
        """Stop the tick task for good.  Idempotent."""
        if self._closed:
            return
        self._controller.close()
        self._closed = True
        logger.info("Session '%s' closed.", self.id)

    def change_series(self, series: CandleSeries) -> None:
        """Replace the replayed candles (instrument or interval change).

        The cursor restarts at the first candle.  Rejected while trades
        are open, since they could no longer be priced.
        """
        self._ensure_open()
        if self._ledger.open_trades:
            raise InvalidCursorState(
                "Close open trades before changing instrument or interval"
            )
        speed = self._controller.speed_multiplier
        self._controller.close()
        self._series = series
        self._controller = self._build_controller(series, speed)
        self._last_index = self._controller.index
        self._ledger.instrument = series.instrument
        self._recompute_indicator()
        logger.info(
            "Session '%s' now replays %s %s (%d candles, %s).",
            self.id, series.instrument, series.interval, len(series), series.source,
        )

    # ── Indicators ───────────────────────────────────────────────────────

    @property
    def indicator(self) -> IndicatorKind:
        return self._indicator

    @property
    def indicator_period(self) -> int:
        return self._indicator_period

    @property
    def indicator_points(self) -> list[IndicatorPoint]:
        return list(self._indicator_points)

    def set_indicator(self, kind: IndicatorKind | str, period: Optional[int] = None) -> None:
        """Switch indicator and recompute it over the visible prefix."""
        points = calculate_indicator(kind, self.visible_candles, period)
        self._indicator = IndicatorKind(kind)
        self._indicator_period = DEFAULT_PERIODS[self._indicator] if period is None else period
        self._indicator_points = points

    def _recompute_indicator(self) -> None:
        self._indicator_points = calculate_indicator(
            self._indicator, self.visible_candles, self._indicator_period,
        )

    # ── Trading ──────────────────────────────────────────────────────────

    def open_trade(
        self,
        side: Side | str,
        quantity: Optional[float] = None,
        amount: Optional[float] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        notes: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> SimulatedTrade:
        """Open a trade at the current close.

        Give either *quantity* (units) or *amount* (notional, converted
        to ``amount / close`` units), not both.
        """
        self._ensure_open()
        if (quantity is None) == (amount is None):
            raise ValueError("Specify exactly one of quantity or amount")
        if amount is not None:
            candle = self.current_candle
            if candle is None:
                raise NoCurrentPrice("No candle under the replay cursor")
            if not amount > 0:
                raise ValueError(f"amount must be positive, got {amount}")
            quantity = amount / candle.close
        return self._ledger.open_trade(
            side, quantity,
            stop_loss=stop_loss, take_profit=take_profit, notes=notes, tags=tags,
        )

    def close_trade(self, trade_id: str) -> SimulatedTrade:
        self._ensure_open()
        return self._ledger.close_trade(trade_id)

    def close_all(self, reason: str = "manual") -> list[SimulatedTrade]:
        self._ensure_open()
        return self._ledger.close_all(reason)

    def unrealized_pnl(self) -> float:
        return self._ledger.unrealized_pnl()

    def equity(self) -> float:
        return self._ledger.equity()

    # ── Analytics ────────────────────────────────────────────────────────

    def performance(self) -> PerformanceSummary:
        return calculate_performance(self._ledger.trades, self.starting_balance)

    def equity_curve(self) -> list[float]:
        return equity_curve(self._ledger.trades, self.starting_balance)

    def snapshot(self) -> dict:
        """Point-in-time state with presentation rounding applied."""
        candle = self.current_candle
        last_point = self._indicator_points[-1] if self._indicator_points else None
        return {
            "session_id": self.id,
            "name": self.name,
            "instrument": self.instrument,
            "interval": self.interval,
            "data_source": self._series.source,
            "total_candles": len(self._series),
            "cursor": self._controller.cursor().to_dict(),
            "progress_pct": round(self._controller.progress_pct, 2),
            "current_candle": (
                {
                    "time": candle.time.isoformat(),
                    "open": round_price(self.instrument, candle.open),
                    "high": round_price(self.instrument, candle.high),
                    "low": round_price(self.instrument, candle.low),
                    "close": round_price(self.instrument, candle.close),
                    "volume": candle.volume,
                }
                if candle else None
            ),
            "starting_balance": round_money(self.starting_balance),
            "balance": round_money(self._ledger.running_balance),
            "unrealized_pnl": round_money(self._ledger.unrealized_pnl()),
            "equity": round_money(self._ledger.equity()),
            "open_trades": len(self._ledger.open_trades),
            "closed_trades": len(self._ledger.closed_trades),
            "indicator": {
                "kind": self._indicator.value,
                "period": self._indicator_period,
                "last": last_point.value if last_point else None,
            },
            "enforce_stops": self.enforce_stops,
            "closed": self._closed,
        }

    # ── Internals ────────────────────────────────────────────────────────

    def _build_controller(self, series: CandleSeries, speed: float) -> PlaybackController:
        return PlaybackController(
            length=len(series),
            base_period=self._base_period,
            speed_multiplier=speed,
            on_move=self._on_cursor_move,
            on_finished=self._on_playback_finished,
            sleep=self._sleep,
        )

    def _on_cursor_move(self, index: int) -> None:
        previous, self._last_index = self._last_index, index
        if self.enforce_stops and index > previous:
            self._fill_stops(range(previous + 1, index + 1))
        self._recompute_indicator()
        self._emit("cursor_moved", index=index)

    def _on_playback_finished(self) -> None:
        logger.info("Session '%s' replay reached the last candle.", self.id)
        self._emit("playback_finished", index=self._controller.index)

    def _fill_stops(self, indices: range) -> None:
        """Close open trades whose levels the revealed candles touched."""
        for i in indices:
            candle = self._series[i]
            for trade in self._ledger.open_trades:
                if trade.entry_index >= i:
                    continue
                hit = check_exit(trade, candle)
                if hit is not None:
                    price, reason = hit
                    self._ledger.close_at_level(
                        trade.id, price, reason, index=i, candle=candle,
                    )

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidCursorState(f"Session '{self.id}' is closed")
