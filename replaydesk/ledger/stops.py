"""Stop-loss / take-profit fill detection for simulated trades."""

from typing import Optional

from replaydesk.ledger.models import Side, SimulatedTrade
from replaydesk.market.models import Candle


def check_exit(trade: SimulatedTrade, candle: Candle) -> Optional[tuple[float, str]]:
    """Check if *candle* touches the trade's stop or target.

    Returns ``(exit_price, reason)`` or ``None``.  When both levels are
    touched in one candle the stop is assumed first (conservative).
    """
    sl = trade.stop_loss
    tp = trade.take_profit

    if trade.side is Side.BUY:
        sl_hit = sl is not None and candle.low <= sl
        tp_hit = tp is not None and candle.high >= tp
    else:
        sl_hit = sl is not None and candle.high >= sl
        tp_hit = tp is not None and candle.low <= tp

    if sl_hit:
        return sl, "stop_loss"
    if tp_hit:
        return tp, "take_profit"
    return None
