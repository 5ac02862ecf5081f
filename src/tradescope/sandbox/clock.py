"""Simulated clock for sandbox replay.

Simulated time is derived, not ticked:

  now = anchor + running_wall_seconds * speed

where running_wall_seconds accumulates only while the clock is running.
Pausing therefore freezes time exactly, and a speed change re-anchors at
the current simulated time so the timeline never jumps.
"""

import time
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

MIN_SPEED = 1
MAX_SPEED = 100
MIN_POLL_INTERVAL = 0.010


class ClockState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


def clamp_speed(speed: int) -> int:
    return max(MIN_SPEED, min(MAX_SPEED, int(speed)))


class SandboxClock:
    """Wall-clock driven simulated time with pause and playback speed.

    Args:
        speed: Playback multiplier, clamped to 1-100.
        time_fn: Monotonic wall clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        speed: int = 1,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._time_fn = time_fn
        self._speed = clamp_speed(speed)
        self._state = ClockState.STOPPED
        self._anchor: datetime | None = None
        self._end: datetime | None = None
        self._elapsed = 0.0  # running wall seconds since the anchor
        self._resumed_at = 0.0

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def speed(self) -> int:
        return self._speed

    @property
    def end_time(self) -> datetime | None:
        return self._end

    @property
    def is_running(self) -> bool:
        return self._state == ClockState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self._state == ClockState.PAUSED

    def start(
        self,
        start_time: datetime,
        end_time: datetime | None = None,
        paused: bool = False,
    ) -> None:
        """Begin a new timeline at ``start_time``."""
        self._anchor = start_time
        self._end = end_time
        self._elapsed = 0.0
        self._resumed_at = self._time_fn()
        self._state = ClockState.PAUSED if paused else ClockState.RUNNING

    def _running_seconds(self) -> float:
        if self._state == ClockState.RUNNING:
            return self._elapsed + (self._time_fn() - self._resumed_at)
        return self._elapsed

    def now(self) -> datetime:
        """Current simulated time.

        Raises:
            RuntimeError: If the clock was never started.
        """
        if self._anchor is None:
            raise RuntimeError("Clock not started. Call start() first.")
        return self._anchor + timedelta(seconds=self._running_seconds() * self._speed)

    def pause(self) -> None:
        if self._state == ClockState.RUNNING:
            self._elapsed = self._running_seconds()
            self._state = ClockState.PAUSED

    def resume(self) -> None:
        if self._state == ClockState.PAUSED:
            self._resumed_at = self._time_fn()
            self._state = ClockState.RUNNING

    def stop(self) -> None:
        """Stop the clock. now() keeps returning the time it stopped at."""
        if self._state == ClockState.RUNNING:
            self._elapsed = self._running_seconds()
        self._state = ClockState.STOPPED

    def set_speed(self, speed: int) -> int:
        """Change playback speed without a jump in simulated time.

        Returns:
            The applied (clamped) speed.
        """
        speed = clamp_speed(speed)
        if self._anchor is not None:
            self._anchor = self.now()
            self._elapsed = 0.0
            self._resumed_at = self._time_fn()
        self._speed = speed
        return speed

    def is_past_end(self) -> bool:
        return self._end is not None and self._anchor is not None and self.now() >= self._end

    def poll_interval(self) -> float:
        """Seconds between replay polls: max(10 ms, 1 s / speed)."""
        return max(MIN_POLL_INTERVAL, 1.0 / self._speed)
