"""Simulated trade ledger — open/close paper trades against the replay cursor.

Entry and exit prices come from the candle under the cursor, and the
trade times are replay times, never wall-clock.  Balance only changes
when a trade closes.
"""

import logging
import math
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional, Protocol

from replaydesk.errors import (
    InvalidCursorState,
    NoCurrentPrice,
    TradeAlreadyClosed,
    TradeNotFound,
)
from replaydesk.ledger.models import LedgerEvent, Side, SimulatedTrade, TradeStatus
from replaydesk.market.models import Candle

logger = logging.getLogger("replaydesk.ledger")


class CursorView(Protocol):
    """Read-only view of the replay cursor the ledger prices against."""

    @property
    def current_index(self) -> int: ...

    @property
    def current_candle(self) -> Optional[Candle]: ...


class Ledger:
    """Ordered collection of simulated trades for one session.

    Args:
        starting_balance: Session starting balance.
        cursor: Provides the current candle and its index.
        instrument: Instrument the trades are recorded against.
    """

    def __init__(
        self,
        starting_balance: float,
        cursor: CursorView,
        instrument: str = "",
    ) -> None:
        self._starting_balance = starting_balance
        self._cursor = cursor
        self.instrument = instrument
        self._trades: list[SimulatedTrade] = []
        self._positions: dict[str, int] = {}
        self._listeners: list[Callable[[LedgerEvent], None]] = []

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def starting_balance(self) -> float:
        return self._starting_balance

    @property
    def trades(self) -> list[SimulatedTrade]:
        return list(self._trades)

    @property
    def open_trades(self) -> list[SimulatedTrade]:
        return [t for t in self._trades if t.is_open]

    @property
    def closed_trades(self) -> list[SimulatedTrade]:
        return [t for t in self._trades if not t.is_open]

    @property
    def realized_pnl(self) -> float:
        return math.fsum(t.realized_pnl for t in self.closed_trades)

    @property
    def running_balance(self) -> float:
        """Starting balance plus realized P&L of every closed trade."""
        return self._starting_balance + self.realized_pnl

    def unrealized_pnl(self) -> float:
        """Mark-to-market P&L of open trades at the current cursor close.

        Recomputed on every call so it always follows the cursor.
        """
        candle = self._cursor.current_candle
        if candle is None:
            return 0.0
        return math.fsum(t.pnl_at(candle.close) for t in self.open_trades)

    def equity(self) -> float:
        return self.running_balance + self.unrealized_pnl()

    def get(self, trade_id: str) -> SimulatedTrade:
        pos = self._positions.get(trade_id)
        if pos is None:
            raise TradeNotFound(trade_id)
        return self._trades[pos]

    # ── Mutation ─────────────────────────────────────────────────────────

    def subscribe(self, listener: Callable[[LedgerEvent], None]) -> None:
        """Register a callback for ``trade_opened`` / ``trade_closed``."""
        self._listeners.append(listener)

    def open_trade(
        self,
        side: Side | str,
        quantity: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        notes: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> SimulatedTrade:
        """Open a trade at the current cursor close.

        Raises ``NoCurrentPrice`` when there is no candle under the
        cursor and ``ValueError`` for a non-positive quantity.
        """
        candle = self._current_candle_or_raise()
        side = Side(side)
        if not quantity > 0:
            raise ValueError(f"quantity must be positive, got {quantity}")

        trade = SimulatedTrade(
            id=uuid.uuid4().hex,
            side=side,
            instrument=self.instrument,
            entry_price=candle.close,
            entry_time=candle.time,
            entry_index=self._cursor.current_index,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            notes=notes,
            tags=tuple(tags),
        )
        self._positions[trade.id] = len(self._trades)
        self._trades.append(trade)
        logger.info(
            "Opened %s %s x%s @ %s (trade %s).",
            side.value, self.instrument, quantity, candle.close, trade.id,
        )
        self._emit(LedgerEvent("trade_opened", trade))
        return trade

    def close_trade(self, trade_id: str, reason: str = "manual") -> SimulatedTrade:
        """Close *trade_id* at the current cursor close.

        Raises ``TradeNotFound`` / ``TradeAlreadyClosed``, and
        ``InvalidCursorState`` when the cursor sits before the trade's
        entry candle.
        """
        trade = self.get(trade_id)
        if not trade.is_open:
            raise TradeAlreadyClosed(trade_id)
        candle = self._current_candle_or_raise()
        self._ensure_not_before_entry(trade)
        return self._close(
            trade, candle.close, reason, self._cursor.current_index, candle,
        )

    def close_at_level(
        self,
        trade_id: str,
        price: float,
        reason: str,
        index: Optional[int] = None,
        candle: Optional[Candle] = None,
    ) -> SimulatedTrade:
        """Close *trade_id* at an explicit *price* (stop / target fills).

        *index* and *candle* locate the bar that filled the level; they
        default to the cursor's current candle.
        """
        trade = self.get(trade_id)
        if not trade.is_open:
            raise TradeAlreadyClosed(trade_id)
        if candle is None:
            candle = self._current_candle_or_raise()
            index = self._cursor.current_index
        return self._close(trade, price, reason, index, candle)

    def close_all(self, reason: str = "manual") -> list[SimulatedTrade]:
        """Close every open trade at the current cursor close.

        Nothing is closed if any open trade was entered after the cursor.
        """
        open_trades = self.open_trades
        for trade in open_trades:
            self._ensure_not_before_entry(trade)
        return [self.close_trade(t.id, reason) for t in open_trades]

    def restore(self, trades: Iterable[SimulatedTrade]) -> None:
        """Rebuild the ledger from previously persisted trades.

        Replaces the current contents; emits no events.
        """
        restored = list(trades)
        ids = [t.id for t in restored]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate trade ids in restored ledger")
        self._trades = restored
        self._positions = {t.id: i for i, t in enumerate(restored)}

    def clear(self) -> None:
        self._trades = []
        self._positions = {}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _close(
        self,
        trade: SimulatedTrade,
        price: float,
        reason: str,
        index: Optional[int],
        candle: Candle,
    ) -> SimulatedTrade:
        closed = replace(
            trade,
            status=TradeStatus.CLOSED,
            exit_price=price,
            exit_time=candle.time,
            exit_index=index,
            exit_reason=reason,
            realized_pnl=trade.pnl_at(price),
        )
        self._trades[self._positions[trade.id]] = closed
        logger.info(
            "Closed trade %s @ %s (%s): P&L %.2f.",
            trade.id, price, reason, closed.realized_pnl,
        )
        self._emit(LedgerEvent("trade_closed", closed))
        return closed

    def _current_candle_or_raise(self) -> Candle:
        candle = self._cursor.current_candle
        if candle is None or self._cursor.current_index < 0:
            raise NoCurrentPrice("No candle under the replay cursor")
        return candle

    def _ensure_not_before_entry(self, trade: SimulatedTrade) -> None:
        if self._cursor.current_index < trade.entry_index:
            raise InvalidCursorState(
                f"Cursor is before the entry candle of trade {trade.id}; "
                f"move to candle {trade.entry_index} or later to close it"
            )

    def _emit(self, event: LedgerEvent) -> None:
        for listener in self._listeners:
            listener(event)
