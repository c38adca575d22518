"""Backtest statistics — pure functions over a session's closed trades."""

import math
from dataclasses import dataclass
from itertools import accumulate
from typing import Iterable, Optional

from replaydesk.ledger.models import SimulatedTrade


@dataclass(frozen=True)
class PerformanceSummary:
    """Aggregate performance of the closed trades of a ledger.

    ``profit_factor`` is ``math.inf`` when there are profits and no
    losses.  ``win_rate`` and the ``*_pct`` fields are percentages.
    """

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    profit_factor: float
    total_return: float
    total_return_pct: float
    max_drawdown: float
    max_drawdown_pct: float
    average_win: float
    average_loss: float
    best_trade: float
    worst_trade: float
    sharpe_ratio: float

    def to_dict(self) -> dict:
        """JSON-ready dict; currency rounded to cents.

        JSON has no infinity, so an infinite profit factor is reported as
        ``None`` with ``profit_factor_infinite`` set.
        """
        infinite = math.isinf(self.profit_factor)
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 2),
            "profit_factor": None if infinite else round(self.profit_factor, 4),
            "profit_factor_infinite": infinite,
            "total_return": round(self.total_return, 2),
            "total_return_pct": round(self.total_return_pct, 2),
            "max_drawdown": round(self.max_drawdown, 2),
            "max_drawdown_pct": round(self.max_drawdown_pct, 2),
            "average_win": round(self.average_win, 2),
            "average_loss": round(self.average_loss, 2),
            "best_trade": round(self.best_trade, 2),
            "worst_trade": round(self.worst_trade, 2),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
        }


def closed_in_close_order(trades: Iterable[SimulatedTrade]) -> list[SimulatedTrade]:
    """Closed trades sorted by exit time; ties keep ledger order."""
    closed = [t for t in trades if not t.is_open]
    return sorted(closed, key=lambda t: t.exit_time)


def calculate_performance(
    trades: Iterable[SimulatedTrade],
    starting_balance: Optional[float] = None,
) -> PerformanceSummary:
    """Compute summary statistics from a ledger's trades.

    Open trades are ignored.  Drawdown walks the cumulative P&L in
    close-time order regardless of ledger insertion order.

    Args:
        trades: Any mix of open and closed trades.
        starting_balance: Enables ``total_return_pct`` and
            ``max_drawdown_pct``; both are ``0`` without it.
    """
    pnls = [t.realized_pnl for t in closed_in_close_order(trades)]
    if not pnls:
        return PerformanceSummary(
            total_trades=0,
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            profit_factor=0.0,
            total_return=0.0,
            total_return_pct=0.0,
            max_drawdown=0.0,
            max_drawdown_pct=0.0,
            average_win=0.0,
            average_loss=0.0,
            best_trade=0.0,
            worst_trade=0.0,
            sharpe_ratio=0.0,
        )

    total = len(pnls)
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p < 0]

    gross_profit = math.fsum(winners)
    gross_loss = abs(math.fsum(losers))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    elif gross_profit > 0:
        profit_factor = math.inf
    else:
        profit_factor = 0.0

    net_pnl = math.fsum(pnls)
    has_balance = starting_balance is not None and starting_balance > 0

    return PerformanceSummary(
        total_trades=total,
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=len(winners) / total * 100.0,
        profit_factor=profit_factor,
        total_return=net_pnl,
        total_return_pct=net_pnl / starting_balance * 100.0 if has_balance else 0.0,
        max_drawdown=_max_drawdown(pnls),
        max_drawdown_pct=(
            _max_drawdown_pct(pnls, starting_balance) if has_balance else 0.0
        ),
        average_win=gross_profit / len(winners) if winners else 0.0,
        average_loss=math.fsum(losers) / len(losers) if losers else 0.0,
        best_trade=max(pnls),
        worst_trade=min(pnls),
        sharpe_ratio=_sharpe(pnls),
    )


def equity_curve(
    trades: Iterable[SimulatedTrade], starting_balance: float,
) -> list[float]:
    """Balance after each close, in close-time order, led by the start."""
    curve = [starting_balance]
    realized = 0.0
    for t in closed_in_close_order(trades):
        realized += t.realized_pnl
        curve.append(starting_balance + realized)
    return curve


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(pnls: list[float]) -> float:
    """Per-trade Sharpe ratio scaled by √252.

    Each closed trade counts as one observation; the spread is the
    sample standard deviation.  0.0 for fewer than two trades or when
    every trade returned the same P&L.
    """
    if len(pnls) < 2:
        return 0.0
    mean = math.fsum(pnls) / len(pnls)
    spread = math.sqrt(
        math.fsum((p - mean) ** 2 for p in pnls) / (len(pnls) - 1)
    )
    if spread == 0:
        return 0.0
    return mean / spread * math.sqrt(252)


def _max_drawdown(pnls: list[float]) -> float:
    """Largest fall of cumulative realized P&L from its running high.

    *pnls* must be in close-time order.  The running high starts at 0,
    so a session that opens with a loss is already in drawdown.
    """
    running_high = 0.0
    worst = 0.0
    for cumulative in accumulate(pnls):
        running_high = max(running_high, cumulative)
        worst = max(worst, running_high - cumulative)
    return worst


def _max_drawdown_pct(pnls: list[float], starting_balance: float) -> float:
    """Maximum drawdown as a percentage of the running equity peak."""
    equity = starting_balance
    peak = starting_balance
    max_dd = 0.0
    for p in pnls:
        equity += p
        if equity > peak:
            peak = equity
        if peak > 0:
            max_dd = max(max_dd, (peak - equity) / peak * 100.0)
    return max_dd
