"""CLI dashboard — prints session status to the console."""


def print_status(status: dict) -> str:
    """Format and print the current session status.

    Args:
        status: Dict shaped like ``BacktestSession.snapshot()``, optionally
                with a ``performance`` summary dict.

    Returns:
        The formatted string (also printed to stdout).
    """
    name = status.get("name", "N/A")
    cursor = status.get("cursor") or {}
    state = cursor.get("state", "unknown")
    index = cursor.get("index", -1)
    total = status.get("total_candles", 0)
    progress = status.get("progress_pct", 0.0)
    source = status.get("data_source", "N/A")
    balance = status.get("balance")
    equity = status.get("equity")
    open_trades = status.get("open_trades", 0)
    perf = status.get("performance") or {}

    balance_str = f"${balance:,.2f}" if balance is not None else "N/A"
    equity_str = f"${equity:,.2f}" if equity is not None else "N/A"
    win_rate = perf.get("win_rate")
    win_str = f"{win_rate:.1f}%" if win_rate is not None else "N/A"
    if perf.get("profit_factor_infinite"):
        pf_str = "∞"
    elif perf.get("profit_factor") is not None:
        pf_str = f"{perf['profit_factor']:.2f}"
    else:
        pf_str = "N/A"
    dd = perf.get("max_drawdown")
    dd_str = f"${dd:,.2f}" if dd is not None else "N/A"

    lines = [
        "──────────────── ReplayDesk Status ───────────────",
        f"  Session:         {name}",
        f"  State:           {state}",
        f"  Candle:          {index + 1}/{total} ({progress:.1f}%)",
        f"  Data Source:     {source}",
        f"  Balance:         {balance_str}",
        f"  Equity:          {equity_str}",
        f"  Open Trades:     {open_trades}",
        f"  Closed Trades:   {perf.get('total_trades', status.get('closed_trades', 0))}",
        f"  Win Rate:        {win_str}",
        f"  Profit Factor:   {pf_str}",
        f"  Max Drawdown:    {dd_str}",
        "──────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
