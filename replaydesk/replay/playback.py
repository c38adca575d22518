"""Playback controller — drives the replay cursor through a candle series.

The controller owns the only tick source for its cursor: a single
``asyncio.Task`` that sleeps ``base_period / speed`` seconds and advances
the cursor by one candle.  ``play`` refuses to start a second task while
one is live; ``pause``, ``set_speed`` and ``close`` cancel it.  Must be
driven from a running event loop.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from replaydesk.errors import ConfigurationError, InvalidCursorState

logger = logging.getLogger("replaydesk.playback")

Sleep = Callable[[float], Awaitable[None]]


class PlaybackState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass(frozen=True)
class ReplayCursor:
    """Point-in-time view of the cursor."""

    index: int  # -1 when the series is empty
    is_playing: bool
    speed_multiplier: float
    state: PlaybackState

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "is_playing": self.is_playing,
            "speed_multiplier": self.speed_multiplier,
            "state": self.state.value,
        }


class PlaybackController:
    """Play/pause/step/seek state machine over a series of *length* candles.

    Args:
        length: Number of candles in the series.
        base_period: Seconds per tick at 1x speed.
        speed_multiplier: Initial speed.
        on_move: Called with the new index after every cursor move.
        on_finished: Called when playback reaches the last candle.
        sleep: Awaitable sleep used by the tick task (``asyncio.sleep``).
    """

    def __init__(
        self,
        length: int,
        base_period: float = 1.0,
        speed_multiplier: float = 1.0,
        on_move: Optional[Callable[[int], None]] = None,
        on_finished: Optional[Callable[[], None]] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if base_period <= 0:
            raise ConfigurationError(
                f"base_period must be positive, got {base_period}",
                field="base_period",
            )
        _check_speed(speed_multiplier)
        self._length = max(0, length)
        self._index = 0 if self._length else -1
        self._base_period = base_period
        self._speed = speed_multiplier
        self._on_move = on_move
        self._on_finished = on_finished
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def index(self) -> int:
        return self._index

    @property
    def length(self) -> int:
        return self._length

    @property
    def speed_multiplier(self) -> float:
        return self._speed

    @property
    def tick_period(self) -> float:
        """Seconds between ticks at the current speed."""
        return self._base_period / self._speed

    @property
    def is_running(self) -> bool:
        """``True`` while a tick task is live."""
        return self._task is not None

    @property
    def at_end(self) -> bool:
        return self._length > 0 and self._index >= self._length - 1

    @property
    def state(self) -> PlaybackState:
        if self._task is not None:
            return PlaybackState.PLAYING
        if self.at_end:
            return PlaybackState.FINISHED
        return PlaybackState.STOPPED

    @property
    def progress_pct(self) -> float:
        """Cursor position as a percentage of the series."""
        if self._length <= 1:
            return 0.0
        return self._index / (self._length - 1) * 100.0

    @property
    def closed(self) -> bool:
        return self._closed

    def cursor(self) -> ReplayCursor:
        return ReplayCursor(
            index=self._index,
            is_playing=self.is_running,
            speed_multiplier=self._speed,
            state=self.state,
        )

    # ── Transport controls ───────────────────────────────────────────────

    def play(self) -> bool:
        """Start ticking.

        Returns ``False`` (and does nothing) when already playing, when
        the series is empty, or when the cursor is on the last candle.
        """
        self._ensure_open()
        if self._task is not None:
            return False
        if self._length == 0 or self.at_end:
            return False
        self._start_task()
        logger.debug("Playback started at index %d (%.3fs/tick).",
                     self._index, self.tick_period)
        return True

    def pause(self) -> None:
        """Stop ticking.  Idempotent."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            logger.debug("Playback paused at index %d.", self._index)

    def step(self) -> int:
        """Advance exactly one candle, clamped at the last one.

        Raises ``InvalidCursorState`` while playing or on an empty series.
        """
        self._ensure_steppable()
        if not self.at_end:
            self._move_to(self._index + 1)
        return self._index

    def step_back(self) -> int:
        """Move back one candle, clamped at the first one."""
        self._ensure_steppable()
        if self._index > 0:
            self._move_to(self._index - 1)
        return self._index

    def seek(self, position: float) -> int:
        """Jump to *position* percent (0–100) of the series.

        Allowed in any state; playback continues from the new index.
        """
        self._ensure_open()
        if self._length == 0:
            raise InvalidCursorState("Cannot seek an empty series")
        if not 0.0 <= position <= 100.0:
            raise InvalidCursorState(
                f"Seek position must be within 0–100, got {position}"
            )
        self._move_to(math.floor(position / 100.0 * (self._length - 1)))
        if self.at_end and self._task is not None:
            self.pause()
            self._notify_finished()
        return self._index

    def set_speed(self, multiplier: float) -> None:
        """Change the tick period.

        While playing, the pending tick is cancelled and a fresh task is
        started with the new period, so no tick is skipped or doubled.
        """
        self._ensure_open()
        _check_speed(multiplier)
        self._speed = multiplier
        if self._task is not None:
            self.pause()
            self._start_task()
        logger.debug("Playback speed set to %sx.", multiplier)

    def reset(self) -> None:
        """Stop and rewind to the first candle."""
        self._ensure_open()
        self.pause()
        if self._length:
            self._move_to(0)

    def close(self) -> None:
        """Cancel the tick task for good; later controls raise."""
        self.pause()
        self._closed = True

    async def wait_finished(self) -> None:
        """Wait until no tick task is live (finished, paused or closed)."""
        while self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ── Internals ────────────────────────────────────────────────────────

    def _start_task(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        me = asyncio.current_task()
        try:
            while self._task is me and not self.at_end:
                await self._sleep(self.tick_period)
                if self._task is not me:
                    break
                self._move_to(self._index + 1)
        except Exception:
            logger.exception("Playback tick failed at index %d.", self._index)
        finally:
            if self._task is me:
                self._task = None
                if self.at_end:
                    logger.debug("Playback finished at index %d.", self._index)
                    self._notify_finished()

    def _move_to(self, index: int) -> None:
        if index == self._index:
            return
        self._index = index
        if self._on_move is not None:
            self._on_move(index)
        # A live tick task reports the end itself when it exits.
        if self._task is None and self.at_end:
            self._notify_finished()

    def _notify_finished(self) -> None:
        if self._on_finished is not None:
            self._on_finished()

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidCursorState("Playback controller is closed")

    def _ensure_steppable(self) -> None:
        self._ensure_open()
        if self._length == 0:
            raise InvalidCursorState("Cannot step an empty series")
        if self._task is not None:
            raise InvalidCursorState("Cannot step while playing; pause first")


def _check_speed(multiplier: float) -> None:
    if not (multiplier > 0 and math.isfinite(multiplier)):
        raise ConfigurationError(
            f"Speed multiplier must be a positive number, got {multiplier}",
            field="speed",
        )
