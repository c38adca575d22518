"""Error taxonomy for the replay engine.

Every error raised by the core derives from ``ReplayDeskError`` and carries
a machine-readable ``code`` so the API layer can report it without knowing
the concrete class.
"""

from typing import Optional


class ReplayDeskError(Exception):
    """Base class for all replay-engine errors."""

    code = "REPLAYDESK_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class DataUnavailable(ReplayDeskError):
    """The market data provider failed or returned no candles."""

    code = "DATA_UNAVAILABLE"


class InvalidCursorState(ReplayDeskError):
    """A playback or ledger operation was attempted in an invalid state."""

    code = "INVALID_CURSOR_STATE"


class NoCurrentPrice(InvalidCursorState):
    """No candle under the cursor, so there is no price to trade at."""

    code = "NO_CURRENT_PRICE"


class TradeNotFound(ReplayDeskError):
    """No trade with the given id exists in the ledger."""

    code = "TRADE_NOT_FOUND"

    def __init__(self, trade_id: str) -> None:
        super().__init__(f"Unknown trade: {trade_id}")
        self.trade_id = trade_id


class TradeAlreadyClosed(ReplayDeskError):
    """The trade was already closed; closing twice is rejected."""

    code = "TRADE_ALREADY_CLOSED"

    def __init__(self, trade_id: str) -> None:
        super().__init__(f"Trade {trade_id} is already closed")
        self.trade_id = trade_id


class SessionNotFound(ReplayDeskError):
    """No backtest session with the given id is loaded."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Unknown session: {session_id}")
        self.session_id = session_id


class ConfigurationError(ReplayDeskError, ValueError):
    """Invalid configuration value (env var, interval, speed, period)."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
