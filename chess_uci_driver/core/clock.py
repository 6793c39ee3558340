"""
Multi-stage chess clock.

A clock is built from an ordered list of time controls. Each stage except the
last covers a fixed number of moves; when a side completes that many moves in
a stage, the next stage's base time is added to whatever it has left. While a
side is on move, its delay allowance drains first and its main time only after
the delay is exhausted.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigError, UsageError
from .models import Side

logger = logging.getLogger(__name__)

TimeUpHandler = Callable[[Side], None]


@dataclass(frozen=True)
class TimeControl:
    """
    One stage of a time control, in milliseconds.

    Attributes:
        time_ms: Base time added when the stage begins
        increment_ms: Time added after every move made in this stage
        delay_ms: Per-move allowance consumed before the main time
        moves: Moves in the stage, or None for sudden death
    """

    time_ms: int
    increment_ms: int = 0
    delay_ms: int = 0
    moves: Optional[int] = None

    def __post_init__(self):
        if self.time_ms < 0 or self.increment_ms < 0 or self.delay_ms < 0:
            raise ConfigError(f"Time control values must not be negative: {self}")
        if self.moves is not None and self.moves <= 0:
            raise ConfigError(f"Stage move count must be positive, got {self.moves}")

    @classmethod
    def from_minutes(
        cls,
        minutes: float,
        increment_seconds: float = 0,
        delay_seconds: float = 0,
        moves: Optional[int] = None,
    ) -> TimeControl:
        return cls(
            int(minutes * 60_000),
            int(increment_seconds * 1000),
            int(delay_seconds * 1000),
            moves,
        )

    @property
    def is_sudden_death(self) -> bool:
        return self.moves is None


@dataclass
class ClockSide:
    """Per-side clock state. Copies of this are handed out by the clock."""

    remaining_ms: float
    delay_remaining_ms: float = 0
    moves_played: int = 0
    stage_index: int = 0
    flag_fallen: bool = False


class ClockState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"


def _validate(time_controls: Sequence[TimeControl]) -> Tuple[TimeControl, ...]:
    stages = tuple(time_controls)
    if not stages:
        raise ConfigError("At least one time control is required")
    for index, stage in enumerate(stages[:-1]):
        if stage.is_sudden_death:
            raise ConfigError(
                f"Only the last time control may be sudden death (stage {index + 1} has no move count)"
            )
    return stages


class ChessClock:
    """
    Two-sided chess clock with stages, increment and delay.

    White is on move when the clock starts. While running, a periodic tick
    charges elapsed time to the side on move; move() settles the elapsed time
    and hands the turn over. When a side's time reaches zero its flag falls,
    the clock stops and every time-up handler is called once with that side.
    """

    def __init__(
        self,
        time_controls: Sequence[TimeControl],
        tick_interval: float = 0.25,
        time_source: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the clock.

        Args:
            time_controls: Ordered stages; only the last may be sudden death
            tick_interval: Seconds between background ticks while running
            time_source: Monotonic clock in seconds, injectable for tests

        Raises:
            ConfigError: If the stages are empty or badly ordered
        """
        self.time_controls = _validate(time_controls)
        self.tick_interval = tick_interval
        self._now = time_source

        first = self.time_controls[0]
        self._sides: Dict[Side, ClockSide] = {
            side: ClockSide(first.time_ms, first.delay_ms) for side in Side
        }
        self._active = Side.WHITE
        self._state = ClockState.IDLE
        self._last_tick: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._handlers: List[TimeUpHandler] = []

    def add_time_up_handler(self, handler: TimeUpHandler) -> None:
        self._handlers.append(handler)

    def start(self) -> None:
        """
        Start counting down for the side on move.

        Must be called from within a running event loop.
        """
        if self._state is ClockState.TIMED_OUT:
            raise UsageError("Clock has already run out")
        if self._state is ClockState.RUNNING:
            return
        self._last_tick = self._now()
        self._state = ClockState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Clock started, {self._active} to move")

    def stop(self) -> None:
        """Stop the tick loop, leaving recorded remaining times untouched."""
        if self._state is ClockState.RUNNING:
            self._state = ClockState.STOPPED
        self._cancel_task()

    def tick(self, now: Optional[float] = None) -> None:
        """Charge the time elapsed since the last tick to the side on move."""
        if self._state is not ClockState.RUNNING:
            return
        now = self._now() if now is None else now
        elapsed_ms = max(0.0, (now - self._last_tick) * 1000)
        self._last_tick = now

        side = self._sides[self._active]
        if side.delay_remaining_ms >= elapsed_ms:
            side.delay_remaining_ms -= elapsed_ms
            return
        overflow = elapsed_ms - side.delay_remaining_ms
        side.delay_remaining_ms = 0
        side.remaining_ms -= overflow
        if side.remaining_ms <= 0:
            side.remaining_ms = 0
            self._flag(self._active)

    def move(self) -> None:
        """
        Record that the side on move has completed its move.

        Applies the current stage's increment, resets the delay allowance,
        advances to the next stage when the stage's move count is reached,
        and passes the turn to the other side. Ignored once a flag has fallen.
        """
        self.tick()
        if self._state is ClockState.TIMED_OUT:
            logger.warning("Move recorded after time ran out; ignoring")
            return

        mover = self._active
        side = self._sides[mover]
        stage = self.time_controls[side.stage_index]

        side.remaining_ms += stage.increment_ms
        side.moves_played += 1
        side.delay_remaining_ms = stage.delay_ms

        if (
            stage.moves is not None
            and side.moves_played >= stage.moves
            and side.stage_index + 1 < len(self.time_controls)
        ):
            side.stage_index += 1
            next_stage = self.time_controls[side.stage_index]
            side.remaining_ms += next_stage.time_ms
            side.delay_remaining_ms = next_stage.delay_ms
            side.moves_played = 0
            logger.debug(f"{mover} entered time control stage {side.stage_index + 1}")

        self._active = mover.opposite

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def active_side(self) -> Side:
        return self._active

    @property
    def is_running(self) -> bool:
        return self._state is ClockState.RUNNING

    def remaining_ms(self, side: Side) -> int:
        """Remaining main time for a side, never negative."""
        return max(0, int(self._sides[side].remaining_ms))

    def increment_ms(self, side: Side) -> int:
        return self.current_stage(side).increment_ms

    def side_state(self, side: Side) -> ClockSide:
        return replace(self._sides[side])

    def current_stage(self, side: Side) -> TimeControl:
        return self.time_controls[self._sides[side].stage_index]

    def moves_to_go(self, side: Side) -> Optional[int]:
        """Moves left before the next stage, or None in sudden death."""
        state = self._sides[side]
        stage = self.time_controls[state.stage_index]
        if stage.moves is None or state.stage_index + 1 >= len(self.time_controls):
            return None
        return stage.moves - state.moves_played

    def _flag(self, side: Side) -> None:
        self._sides[side].flag_fallen = True
        self._state = ClockState.TIMED_OUT
        self._cancel_task()
        logger.info(f"{side}'s time is up")
        for handler in list(self._handlers):
            try:
                handler(side)
            except Exception:
                logger.exception("Time-up handler failed")

    async def _run(self) -> None:
        try:
            while self._state is ClockState.RUNNING:
                await asyncio.sleep(self.tick_interval)
                self.tick()
        except asyncio.CancelledError:
            pass
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
