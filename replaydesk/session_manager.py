"""SessionManager — owns every loaded backtest session.

Sessions are created from the configured candle loader (provider data with
a synthetic fallback) and replay concurrently, each with its own tick task.
Sessions can be closed individually or en masse.
"""

import asyncio
import logging
from typing import Optional

from replaydesk.config import Config
from replaydesk.errors import ConfigurationError, SessionNotFound
from replaydesk.market.instruments import format_pair
from replaydesk.market.loader import CandleLoader
from replaydesk.replay.indicators import IndicatorKind
from replaydesk.replay.playback import Sleep
from replaydesk.session import BacktestSession

logger = logging.getLogger("replaydesk.session_manager")


class SessionManager:
    """Lifecycle manager for one-or-many backtest sessions.

    Args:
        config: Global ``Config`` loaded from ``.env``.
        loader: Shared ``CandleLoader`` instance.
        sleep:  Sleep handed to every session's tick task.
    """

    def __init__(
        self,
        config: Config,
        loader: CandleLoader,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._loader = loader
        self._sleep = sleep
        self._sessions: dict[str, BacktestSession] = {}

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def config(self) -> Config:
        return self._config

    @property
    def sessions(self) -> dict[str, BacktestSession]:
        """Map of session-id → ``BacktestSession``."""
        return dict(self._sessions)

    async def create_session(
        self,
        instrument: str,
        interval: Optional[str] = None,
        name: str = "",
        starting_balance: Optional[float] = None,
        limit: Optional[int] = None,
        speed_multiplier: float = 1.0,
        indicator: IndicatorKind | str = IndicatorKind.SMA,
        indicator_period: Optional[int] = None,
        enforce_stops: Optional[bool] = None,
        description: Optional[str] = None,
    ) -> BacktestSession:
        """Load candles for *instrument* and register a new session.

        Unset arguments fall back to the configured defaults.  A provider
        failure never fails creation: the session replays synthetic
        candles instead (see ``data_source`` in its snapshot).
        """
        interval = interval or self._config.default_interval
        series = await self._loader.load_with_fallback(
            instrument, interval, self._resolve_limit(limit),
        )
        session = BacktestSession(
            series,
            starting_balance=(
                starting_balance
                if starting_balance is not None
                else self._config.starting_balance
            ),
            name=name or f"{format_pair(instrument)} {interval}",
            base_period=self._config.base_tick_seconds,
            speed_multiplier=speed_multiplier,
            indicator=indicator,
            indicator_period=indicator_period,
            enforce_stops=(
                enforce_stops
                if enforce_stops is not None
                else self._config.enforce_stops
            ),
            description=description,
            sleep=self._sleep,
        )
        self._sessions[session.id] = session
        logger.info(
            "Registered session '%s' → %s %s (%d candles, %s).",
            session.id, instrument, interval, len(series), series.source,
        )
        return session

    def get(self, session_id: str) -> BacktestSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def change_instrument(
        self,
        session_id: str,
        instrument: str,
        interval: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> BacktestSession:
        """Reload a session's candles for another instrument or interval."""
        session = self.get(session_id)
        interval = interval or session.interval
        series = await self._loader.load_with_fallback(
            instrument, interval, self._resolve_limit(limit),
        )
        session.change_series(series)
        return session

    def close_session(self, session_id: str) -> None:
        """Stop and forget a single session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        session.close()

    def close_all(self) -> None:
        """Stop every session's playback."""
        for session_id, session in self._sessions.items():
            session.close()
            logger.info("Closed session '%s'.", session_id)
        self._sessions.clear()

    def get_status(self, session_id: Optional[str] = None) -> dict:
        """Return aggregated or per-session status.

        Args:
            session_id: If given, return the snapshot of that session only.
        """
        if session_id is not None:
            return self.get(session_id).snapshot()
        return {
            "sessions": {
                sid: {
                    "name": s.name,
                    "instrument": s.instrument,
                    "interval": s.interval,
                    "state": s.cursor.state.value,
                    "index": s.current_index,
                    "total_candles": len(s.series),
                }
                for sid, s in self._sessions.items()
            }
        }

    # ── Internals ────────────────────────────────────────────────────────

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self._config.candle_limit
        if limit < 1:
            raise ConfigurationError(
                f"Candle limit must be at least 1, got {limit}", field="limit",
            )
        return limit
