"""Instrument metadata — provider symbols, price precision and display formatting.

Rounding lives here because it is a presentation concern: the core keeps
full-precision floats and only formats at the edges.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class InstrumentInfo:
    """Static description of a tradable instrument."""

    value: str  # internal code, e.g. "EURUSD"
    label: str  # display form, e.g. "EUR/USD"
    description: str
    provider_symbol: str  # Twelve Data symbol
    price_precision: int
    base_price: float  # anchor for synthetic data


INSTRUMENTS: dict[str, InstrumentInfo] = {
    i.value: i
    for i in [
        InstrumentInfo("EURUSD", "EUR/USD", "Euro vs US Dollar", "EUR/USD", 5, 1.08),
        InstrumentInfo("GBPUSD", "GBP/USD", "British Pound vs US Dollar", "GBP/USD", 5, 1.27),
        InstrumentInfo("USDJPY", "USD/JPY", "US Dollar vs Japanese Yen", "USD/JPY", 3, 150.0),
        InstrumentInfo("USDCHF", "USD/CHF", "US Dollar vs Swiss Franc", "USD/CHF", 5, 0.88),
        InstrumentInfo("AUDUSD", "AUD/USD", "Australian Dollar vs US Dollar", "AUD/USD", 5, 0.66),
        InstrumentInfo("USDCAD", "USD/CAD", "US Dollar vs Canadian Dollar", "USD/CAD", 5, 1.36),
        InstrumentInfo("NZDUSD", "NZD/USD", "New Zealand Dollar vs US Dollar", "NZD/USD", 5, 0.61),
        InstrumentInfo("EURGBP", "EUR/GBP", "Euro vs British Pound", "EUR/GBP", 5, 0.85),
        InstrumentInfo("EURJPY", "EUR/JPY", "Euro vs Japanese Yen", "EUR/JPY", 3, 162.0),
        InstrumentInfo("GBPJPY", "GBP/JPY", "British Pound vs Japanese Yen", "GBP/JPY", 3, 190.0),
        InstrumentInfo("XAUUSD", "XAU/USD", "Gold vs US Dollar", "XAU/USD", 2, 2000.0),
        InstrumentInfo("XAGUSD", "XAG/USD", "Silver vs US Dollar", "XAG/USD", 3, 24.0),
        InstrumentInfo("BTCUSD", "BTC/USD", "Bitcoin vs US Dollar", "BTC/USD", 2, 60000.0),
        InstrumentInfo("ETHUSD", "ETH/USD", "Ethereum vs US Dollar", "ETH/USD", 2, 3000.0),
        InstrumentInfo("GER40", "DAX", "DAX Index (Germany)", "DAX", 2, 18000.0),
    ]
}

_DEFAULT_PRECISION = 5
_DEFAULT_BASE_PRICE = 100.0


def get_instrument(value: str) -> InstrumentInfo | None:
    """Look up an instrument by its internal code."""
    return INSTRUMENTS.get(value.upper())


def provider_symbol(value: str) -> str:
    """Translate ``EURUSD`` → ``EUR/USD``; unknown codes pass through."""
    info = get_instrument(value)
    return info.provider_symbol if info else value


def format_pair(value: str) -> str:
    """Display label for *value* (``"EUR/USD"``), or *value* itself."""
    info = get_instrument(value)
    return info.label if info else value


def price_precision(value: str) -> int:
    info = get_instrument(value)
    return info.price_precision if info else _DEFAULT_PRECISION


def base_price(value: str) -> float:
    info = get_instrument(value)
    return info.base_price if info else _DEFAULT_BASE_PRICE


def round_price(instrument: str, price: float | None) -> float | None:
    """Round *price* to the instrument's display precision."""
    if price is None:
        return None
    return round(price, price_precision(instrument))


def round_money(amount: float | None) -> float | None:
    """Round a currency amount to cents."""
    if amount is None:
        return None
    return round(amount, 2)
