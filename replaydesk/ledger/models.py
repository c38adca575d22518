"""Ledger data models — simulated trades and the events the ledger emits."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SimulatedTrade:
    """A paper position opened and closed against replay prices.

    Exit fields stay ``None`` while the trade is open.  Closing produces a
    new record; an existing record is never modified.
    """

    id: str
    side: Side
    instrument: str
    entry_price: float
    entry_time: datetime
    entry_index: int
    quantity: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: TradeStatus = TradeStatus.OPEN
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_index: Optional[int] = None
    exit_reason: Optional[str] = None  # "manual", "stop_loss", "take_profit", ...
    realized_pnl: Optional[float] = None
    notes: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    def pnl_at(self, price: float) -> float:
        """P&L if the trade were marked at *price*."""
        if self.side is Side.BUY:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "side": self.side.value,
            "instrument": self.instrument,
            "entry_price": self.entry_price,
            "entry_time": self.entry_time.isoformat(),
            "entry_index": self.entry_index,
            "quantity": self.quantity,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "status": self.status.value,
            "exit_price": self.exit_price,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "exit_index": self.exit_index,
            "exit_reason": self.exit_reason,
            "realized_pnl": self.realized_pnl,
            "notes": self.notes,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class LedgerEvent:
    """A ledger mutation, published for persistence collaborators."""

    kind: str  # "trade_opened" or "trade_closed"
    trade: SimulatedTrade
