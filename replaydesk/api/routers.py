"""Internal API routers — /instruments, /sessions, playback, trades, performance.

No business logic. Delegates to the session manager and its sessions.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from replaydesk.errors import (
    ConfigurationError,
    DataUnavailable,
    InvalidCursorState,
    ReplayDeskError,
    SessionNotFound,
    TradeAlreadyClosed,
    TradeNotFound,
)
from replaydesk.market.instruments import INSTRUMENTS, round_price
from replaydesk.session import BacktestSession, SessionEvent

logger = logging.getLogger("replaydesk.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_session_manager = None  # Set via configure_routers()
_session_events: dict[str, list[dict]] = {}  # Ring buffer per session (max 50)
_MAX_EVENTS = 50

_STATUS_CODES: list[tuple[type, int]] = [
    (TradeNotFound, 404),
    (SessionNotFound, 404),
    (TradeAlreadyClosed, 409),
    (InvalidCursorState, 409),  # includes NoCurrentPrice
    (ConfigurationError, 422),
    (DataUnavailable, 503),
]

_PLAYBACK_ACTIONS = ("play", "pause", "step", "step-back", "reset")

_BOOL_VALUES = {"true": True, "1": True, "yes": True, "false": False, "0": False, "no": False}


def configure_routers(session_manager=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        session_manager: A ``SessionManager`` instance (or duck-type for tests).
    """
    global _session_manager  # noqa: PLW0603
    _session_manager = session_manager
    _session_events.clear()


def record_event(event: SessionEvent) -> None:
    """Append a session event to that session's ring buffer (max 50).

    Cursor moves are not recorded; they would flush trade events out.
    """
    if event.kind == "cursor_moved":
        return
    buffer = _session_events.setdefault(event.session_id, [])
    buffer.append(event.to_dict())
    if len(buffer) > _MAX_EVENTS:
        del buffer[0]


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, ReplayDeskError):
        for cls, status in _STATUS_CODES:
            if isinstance(exc, cls):
                return JSONResponse(status_code=status, content=exc.to_dict())
        return JSONResponse(status_code=400, content=exc.to_dict())
    return JSONResponse(
        status_code=422,
        content={"error": "INVALID_REQUEST", "message": str(exc)},
    )


def _body_float(body: dict, key: str) -> Optional[float]:
    value = body.get(key)
    return None if value is None else float(value)


def _body_int(body: dict, key: str) -> Optional[int]:
    value = body.get(key)
    return None if value is None else int(value)


def _body_bool(body: dict, key: str) -> Optional[bool]:
    value = body.get(key)
    if value is None or isinstance(value, bool):
        return value
    parsed = _BOOL_VALUES.get(str(value).strip().lower())
    if parsed is None:
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return parsed


def _no_manager() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "No session manager"})


def _session(session_id: str) -> BacktestSession:
    return _session_manager.get(session_id)


# ── Instruments ──────────────────────────────────────────────────────────


@router.get("/instruments")
async def get_instruments():
    """Return the supported trading pairs."""
    return {
        "instruments": [
            {
                "value": i.value,
                "label": i.label,
                "description": i.description,
                "price_precision": i.price_precision,
            }
            for i in INSTRUMENTS.values()
        ]
    }


# ── Sessions ─────────────────────────────────────────────────────────────


@router.get("/sessions")
async def list_sessions():
    """Return a summary of every loaded session."""
    if _session_manager is None:
        return {"sessions": {}}
    return _session_manager.get_status()


@router.post("/sessions", status_code=201)
async def create_session(body: dict):
    """Create a session; candles come from the provider or synthetic data.

    Expects ``{"instrument": "EURUSD", "interval": "1h", ...}``.
    """
    if _session_manager is None:
        return _no_manager()
    instrument = body.get("instrument")
    if not instrument:
        return _error_response(ValueError("instrument is required"))
    try:
        session = await _session_manager.create_session(
            instrument=str(instrument).upper(),
            interval=body.get("interval"),
            name=str(body.get("name") or ""),
            starting_balance=_body_float(body, "starting_balance"),
            limit=_body_int(body, "limit"),
            speed_multiplier=float(body.get("speed_multiplier", 1.0)),
            indicator=body.get("indicator", "sma"),
            indicator_period=_body_int(body, "indicator_period"),
            enforce_stops=_body_bool(body, "enforce_stops"),
            description=body.get("description"),
        )
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    session.subscribe(record_event)
    logger.info("Session '%s' created via API.", session.id)
    return session.snapshot()


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Return the point-in-time state of one session."""
    if _session_manager is None:
        return _no_manager()
    try:
        return _session(session_id).snapshot()
    except ReplayDeskError as exc:
        return _error_response(exc)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Stop and remove a session."""
    if _session_manager is None:
        return _no_manager()
    try:
        _session_manager.close_session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    _session_events.pop(session_id, None)
    return {"status": "closed", "session_id": session_id}


@router.post("/sessions/{session_id}/instrument")
async def change_instrument(session_id: str, body: dict):
    """Replay another instrument or interval in an existing session."""
    if _session_manager is None:
        return _no_manager()
    instrument = body.get("instrument")
    if not instrument:
        return _error_response(ValueError("instrument is required"))
    try:
        session = await _session_manager.change_instrument(
            session_id,
            str(instrument).upper(),
            interval=body.get("interval"),
            limit=_body_int(body, "limit"),
        )
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    return session.snapshot()


@router.get("/sessions/{session_id}/candles")
async def get_candles(
    session_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
):
    """Return the candles revealed so far (up to and including the cursor)."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    visible = session.visible_candles
    if limit is not None:
        visible = visible[-limit:]
    instrument = session.instrument
    return {
        "instrument": instrument,
        "interval": session.interval,
        "candles": [
            {
                "time": c.time.isoformat(),
                "open": round_price(instrument, c.open),
                "high": round_price(instrument, c.high),
                "low": round_price(instrument, c.low),
                "close": round_price(instrument, c.close),
                "volume": c.volume,
            }
            for c in visible
        ],
    }


# ── Indicators ───────────────────────────────────────────────────────────


@router.get("/sessions/{session_id}/indicator")
async def get_indicator(session_id: str):
    """Return the indicator series over the visible candles."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    return {
        "kind": session.indicator.value,
        "period": session.indicator_period,
        "points": [p.to_dict() for p in session.indicator_points],
    }


@router.post("/sessions/{session_id}/indicator")
async def post_indicator(session_id: str, body: dict):
    """Switch indicator; expects ``{"kind": "rsi", "period": 14}``."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
        session.set_indicator(body.get("kind", "sma"), _body_int(body, "period"))
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    return await get_indicator(session_id)


# ── Playback ─────────────────────────────────────────────────────────────


@router.post("/sessions/{session_id}/playback/seek")
async def seek(session_id: str, body: dict):
    """Move the cursor to a percentage of the series (0–100)."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
        session.seek(float(body["position"]))
    except KeyError:
        return _error_response(ValueError("position is required"))
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    return session.snapshot()


@router.post("/sessions/{session_id}/playback/speed")
async def set_speed(session_id: str, body: dict):
    """Change the playback speed multiplier."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
        session.set_speed(float(body["multiplier"]))
    except KeyError:
        return _error_response(ValueError("multiplier is required"))
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    return session.snapshot()


@router.post("/sessions/{session_id}/playback/{action}")
async def playback(session_id: str, action: str):
    """Apply ``play``, ``pause``, ``step``, ``step-back`` or ``reset``."""
    if _session_manager is None:
        return _no_manager()
    if action not in _PLAYBACK_ACTIONS:
        return JSONResponse(
            status_code=404,
            content={"error": "UNKNOWN_ACTION", "message": f"Unknown action: {action}"},
        )
    try:
        session = _session(session_id)
        if action == "play":
            session.play()
        elif action == "pause":
            session.pause()
        elif action == "step":
            session.step()
        elif action == "step-back":
            session.step_back()
        else:
            session.reset()
    except ReplayDeskError as exc:
        return _error_response(exc)
    logger.debug("Session '%s' playback action: %s.", session_id, action)
    return session.snapshot()


# ── Trades ───────────────────────────────────────────────────────────────


@router.get("/sessions/{session_id}/trades")
async def get_trades(
    session_id: str,
    status: Optional[str] = Query(default=None),
):
    """Return the session's trades, optionally filtered by status."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    ledger = session.ledger
    if status == "open":
        trades = ledger.open_trades
    elif status == "closed":
        trades = ledger.closed_trades
    else:
        trades = ledger.trades
    return {
        "trades": [t.to_dict() for t in trades],
        "total": len(trades),
        "balance": round(ledger.running_balance, 2),
        "unrealized_pnl": round(ledger.unrealized_pnl(), 2),
        "equity": round(ledger.equity(), 2),
    }


@router.post("/sessions/{session_id}/trades", status_code=201)
async def open_trade(session_id: str, body: dict):
    """Open a trade at the cursor close.

    Expects ``{"side": "buy", "quantity": 1000}`` or
    ``{"side": "sell", "amount": 1000}`` plus optional ``stop_loss``,
    ``take_profit``, ``notes`` and ``tags``.
    """
    if _session_manager is None:
        return _no_manager()
    tags = body.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    try:
        session = _session(session_id)
        trade = session.open_trade(
            str(body.get("side", "")),
            quantity=_body_float(body, "quantity"),
            amount=_body_float(body, "amount"),
            stop_loss=_body_float(body, "stop_loss"),
            take_profit=_body_float(body, "take_profit"),
            notes=body.get("notes"),
            tags=[str(t) for t in tags],
        )
    except (ReplayDeskError, ValueError, TypeError) as exc:
        return _error_response(exc)
    return trade.to_dict()


@router.post("/sessions/{session_id}/trades/close-all")
async def close_all_trades(session_id: str):
    """Close every open trade at the cursor close."""
    if _session_manager is None:
        return _no_manager()
    try:
        closed = _session(session_id).close_all()
    except ReplayDeskError as exc:
        return _error_response(exc)
    return {"trades": [t.to_dict() for t in closed], "total": len(closed)}


@router.post("/sessions/{session_id}/trades/{trade_id}/close")
async def close_trade(session_id: str, trade_id: str):
    """Close one trade at the cursor close."""
    if _session_manager is None:
        return _no_manager()
    try:
        trade = _session(session_id).close_trade(trade_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    return trade.to_dict()


# ── Analytics ────────────────────────────────────────────────────────────


@router.get("/sessions/{session_id}/performance")
async def get_performance(session_id: str):
    """Return the performance summary and equity curve."""
    if _session_manager is None:
        return _no_manager()
    try:
        session = _session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    return {
        "summary": session.performance().to_dict(),
        "equity_curve": [round(v, 2) for v in session.equity_curve()],
    }


@router.get("/sessions/{session_id}/events")
async def get_events(
    session_id: str,
    limit: int = Query(default=20, ge=1, le=50),
):
    """Return the session's recent events, newest first."""
    if _session_manager is None:
        return _no_manager()
    try:
        _session(session_id)
    except ReplayDeskError as exc:
        return _error_response(exc)
    recent = _session_events.get(session_id, [])[-limit:]
    recent.reverse()  # newest first
    return {"events": recent}
