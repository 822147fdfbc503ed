"""Delay and sound timers, decremented against wall-clock time."""
from __future__ import annotations
import time
from typing import Callable

TIMER_HZ = 60
MIN_TIMER_HZ = 20
MAX_TIMER_HZ = 80
TIMER_STEP = 10


class Timers:
    """
    Two 8-bit counters that count down toward zero at ``rate`` Hz.

    The cadence follows elapsed time measured by ``clock`` rather than the
    number of CPU cycles, so changing the clock rate does not change how
    fast a game's delay loops run.
    """

    def __init__(self, rate: int = TIMER_HZ,
                 clock: Callable[[], float] = time.perf_counter):
        self.delay = 0
        self.sound = 0
        self.rate = rate
        self._clock = clock
        self._last_tick: float | None = None

    def tick(self) -> int:
        """Apply every whole period elapsed since the last decrement.

        Returns the number of periods applied.
        """
        now = self._clock()
        if self._last_tick is None:
            self._last_tick = now
            return 0

        period = 1.0 / self.rate
        elapsed = now - self._last_tick
        periods = int(elapsed // period)
        if periods <= 0:
            return 0

        # keep the fractional remainder so the average rate stays exact
        self._last_tick += periods * period
        self.delay = max(0, self.delay - periods)
        self.sound = max(0, self.sound - periods)
        return periods

    def restart(self):
        """Forget the time of the last decrement; the next tick starts afresh."""
        self._last_tick = None
