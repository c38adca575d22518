"""Tests for replaydesk.backtest.stats — performance aggregation over closed trades."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from replaydesk.backtest.stats import (
    _max_drawdown,
    _sharpe,
    calculate_performance,
    closed_in_close_order,
    equity_curve,
)
from replaydesk.ledger.models import Side, SimulatedTrade, TradeStatus


# ── Helpers ──────────────────────────────────────────────────────────────

T0 = datetime(2025, 5, 1, tzinfo=timezone.utc)


def _closed(pnl, closed_hour, trade_id=None):
    return SimulatedTrade(
        id=trade_id or f"t{closed_hour}",
        side=Side.BUY,
        instrument="EURUSD",
        entry_price=100.0,
        entry_time=T0,
        entry_index=0,
        quantity=1.0,
        status=TradeStatus.CLOSED,
        exit_price=100.0 + pnl,
        exit_time=T0 + timedelta(hours=closed_hour),
        exit_index=closed_hour,
        exit_reason="manual",
        realized_pnl=pnl,
    )


def _open(trade_id="open"):
    return SimulatedTrade(
        id=trade_id, side=Side.SELL, instrument="EURUSD", entry_price=100.0,
        entry_time=T0, entry_index=0, quantity=1.0,
    )


# ── Empty ledger ─────────────────────────────────────────────────────────


class TestEmptyLedger:
    def test_all_zero_no_errors(self):
        s = calculate_performance([], starting_balance=10000.0)
        assert s.total_trades == 0
        assert s.win_rate == 0
        assert s.profit_factor == 0
        assert s.max_drawdown == 0
        assert s.average_win == 0
        assert s.average_loss == 0

    def test_open_trades_ignored(self):
        s = calculate_performance([_open()])
        assert s.total_trades == 0


# ── Win rate / profit factor ─────────────────────────────────────────────


class TestRatios:
    def test_win_rate_is_percentage(self):
        s = calculate_performance([_closed(10, 1), _closed(-5, 2), _closed(3, 3),
                                   _closed(-1, 4)])
        assert s.total_trades == 4
        assert s.winning_trades == 2
        assert s.losing_trades == 2
        assert s.win_rate == pytest.approx(50.0)

    def test_profit_factor(self):
        s = calculate_performance([_closed(30, 1), _closed(-10, 2), _closed(-5, 3)])
        assert s.profit_factor == pytest.approx(2.0)

    def test_profit_factor_infinite_without_losses(self):
        s = calculate_performance([_closed(5, 1), _closed(7, 2)])
        assert math.isinf(s.profit_factor)
        d = s.to_dict()
        assert d["profit_factor"] is None
        assert d["profit_factor_infinite"] is True

    def test_profit_factor_zero_without_profits(self):
        assert calculate_performance([_closed(-5, 1)]).profit_factor == 0.0

    def test_breakeven_counts_only_in_total(self):
        s = calculate_performance([_closed(0.0, 1), _closed(4, 2)])
        assert s.total_trades == 2
        assert s.winning_trades == 1
        assert s.losing_trades == 0
        assert s.win_rate == pytest.approx(50.0)
        assert math.isinf(s.profit_factor)

    def test_only_breakeven_gives_zero_profit_factor(self):
        assert calculate_performance([_closed(0.0, 1)]).profit_factor == 0.0

    def test_averages_and_extremes(self):
        s = calculate_performance([_closed(10, 1), _closed(20, 2), _closed(-6, 3)])
        assert s.average_win == pytest.approx(15.0)
        assert s.average_loss == pytest.approx(-6.0)
        assert s.best_trade == 20
        assert s.worst_trade == -6

    def test_total_return(self):
        s = calculate_performance([_closed(150, 1), _closed(-50, 2)],
                                  starting_balance=1000.0)
        assert s.total_return == pytest.approx(100.0)
        assert s.total_return_pct == pytest.approx(10.0)


# ── Drawdown ─────────────────────────────────────────────────────────────


class TestDrawdown:
    def test_peak_to_trough(self):
        s = calculate_performance([_closed(10, 1), _closed(-4, 2), _closed(-3, 3),
                                   _closed(20, 4)])
        assert s.max_drawdown == pytest.approx(7.0)

    def test_opening_loss_is_drawdown(self):
        assert _max_drawdown([-5.0, 2.0]) == pytest.approx(5.0)

    def test_uses_close_time_not_insertion_order(self):
        # Inserted as +10, -10, +10 but closed as -10, +10, +10
        trades = [_closed(10, 2, "a"), _closed(-10, 1, "b"), _closed(10, 3, "c")]
        s = calculate_performance(trades)
        assert s.max_drawdown == pytest.approx(10.0)
        reordered = calculate_performance([trades[0], trades[2], trades[1]])
        assert reordered.max_drawdown == s.max_drawdown

    def test_drawdown_pct_from_equity_peak(self):
        s = calculate_performance([_closed(100, 1), _closed(-220, 2)],
                                  starting_balance=1000.0)
        assert s.max_drawdown == pytest.approx(220.0)
        assert s.max_drawdown_pct == pytest.approx(20.0)

    def test_no_drawdown_when_only_winning(self):
        s = calculate_performance([_closed(1, 1), _closed(2, 2)])
        assert s.max_drawdown == 0.0


# ── Equity curve / ordering / Sharpe ─────────────────────────────────────


class TestCurveAndHelpers:
    def test_equity_curve_in_close_order(self):
        trades = [_closed(10, 2, "a"), _closed(-5, 1, "b"), _open()]
        assert equity_curve(trades, 100.0) == [100.0, 95.0, 105.0]

    def test_close_order_stable_for_ties(self):
        trades = [_closed(1, 1, "x"), _closed(2, 1, "y")]
        assert [t.id for t in closed_in_close_order(trades)] == ["x", "y"]

    def test_sharpe_needs_two_points(self):
        assert _sharpe([5.0]) == 0.0
        assert _sharpe([3.0, 3.0]) == 0.0
        assert _sharpe([1.0, 3.0]) > 0

    def test_to_dict_rounds_currency(self):
        d = calculate_performance([_closed(1.23456, 1)]).to_dict()
        assert d["total_return"] == 1.23
        assert d["win_rate"] == 100.0
