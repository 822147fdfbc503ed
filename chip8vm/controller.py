"""
Background execution of a CHIP-8 machine.

The controller runs the fetch/decode/execute loop on its own thread so the
host window can render and sample input at its own frame rate. Only the
pixel buffer, the current key, the pause flag and the cancel flag are shared
with other threads; everything else belongs to the executing thread.

Lifecycle changes are reported as ``Notification`` items on a queue that
the host drains with ``poll()``.
"""
from __future__ import annotations
import enum
import logging
import queue
import random
import threading
import time
from typing import List, NamedTuple, Optional

from .errors import RuntimeFault
from .keyboard import KeyboardMapper, Keypad
from .machine import Chip8
from .timers import MAX_TIMER_HZ, MIN_TIMER_HZ, TIMER_HZ, TIMER_STEP, Timers

logger = logging.getLogger(__name__)

CLOCK_HZ = 700
MIN_CLOCK_HZ = 200
MAX_CLOCK_HZ = 1000
CLOCK_STEP = 100


class State(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    WAITING_FOR_KEY = "waiting for key"
    TERMINATED = "terminated"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (State.TERMINATED, State.FAILED, State.CANCELLED)


class Event(enum.Enum):
    WAITING_FOR_KEY = "waiting for key"
    END_OF_EXECUTION = "end of execution"


class Notification(NamedTuple):
    event: Event
    state: State


def step_rate(value: int, delta: int, lowest: int, highest: int) -> int:
    return max(lowest, min(highest, value + delta))


class Controller:
    def __init__(self, program: bytes, mapper: Optional[KeyboardMapper] = None,
                 clock_rate: int = CLOCK_HZ, timer_rate: int = TIMER_HZ,
                 rng: Optional[random.Random] = None):
        self.program = program
        self.mapper = mapper or KeyboardMapper()
        self._rng = rng
        self._cond = threading.Condition()
        self.keypad = Keypad(self._cond)
        self.notifications: "queue.Queue[Notification]" = queue.Queue()
        self._clock_rate = step_rate(clock_rate, 0, MIN_CLOCK_HZ, MAX_CLOCK_HZ)
        self._timer_rate = step_rate(timer_rate, 0, MIN_TIMER_HZ, MAX_TIMER_HZ)
        self._thread: Optional[threading.Thread] = None
        self._paused = False
        self._cancelled = False
        self._state = State.IDLE
        self.fault: Optional[RuntimeFault] = None
        self.machine = self._build_machine()

    def _build_machine(self) -> Chip8:
        machine = Chip8(mapper=self.mapper, keypad=self.keypad,
                        timers=Timers(self._timer_rate),
                        rng=self._rng or random.Random())
        machine.load_program(self.program)
        return machine

    # =============== Read-only views ===============
    @property
    def state(self) -> State:
        return self._state

    @property
    def display(self) -> bytearray:
        return self.machine.display

    @property
    def clock_rate(self) -> int:
        return self._clock_rate

    @property
    def timer_rate(self) -> int:
        return self._timer_rate

    @property
    def sound_timer(self) -> int:
        return self.machine.timers.sound

    def poll(self) -> List[Notification]:
        """Drain pending notifications without blocking."""
        items = []
        while True:
            try:
                items.append(self.notifications.get_nowait())
            except queue.Empty:
                return items

    # =============== Control operations ===============
    def start(self, paused: bool = False):
        if self._thread is not None:
            raise RuntimeError("controller already started")
        with self._cond:
            self._paused = paused
            self._state = State.PAUSED if paused else State.RUNNING
        self._thread = threading.Thread(target=self._run, name="chip8-cpu", daemon=True)
        self._thread.start()

    def pause(self):
        with self._cond:
            self._paused = True

    def resume(self):
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def toggle_pause(self) -> bool:
        if self._paused:
            self.resume()
        else:
            self.pause()
        return self._paused

    def cancel(self):
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def join(self, timeout: Optional[float] = None) -> State:
        if self._thread is not None:
            self._thread.join(timeout)
        return self._state

    def reset(self, paused: bool = True):
        """Stop the current run and start the same program on a fresh machine."""
        self.cancel()
        if self._thread is not None:
            self._thread.join()
        self._thread = None
        with self._cond:
            self._cancelled = False
        self.keypad.release()
        self.fault = None
        self.machine = self._build_machine()
        self._state = State.IDLE
        logger.info("Machine reset")
        self.start(paused=paused)

    def press(self, host_key: Optional[int]):
        self.keypad.press(host_key)

    def release(self):
        self.keypad.release()

    def increase_clock_rate(self) -> int:
        self._clock_rate = step_rate(self._clock_rate, CLOCK_STEP, MIN_CLOCK_HZ, MAX_CLOCK_HZ)
        logger.debug("Clock rate %d Hz", self._clock_rate)
        return self._clock_rate

    def decrease_clock_rate(self) -> int:
        self._clock_rate = step_rate(self._clock_rate, -CLOCK_STEP, MIN_CLOCK_HZ, MAX_CLOCK_HZ)
        logger.debug("Clock rate %d Hz", self._clock_rate)
        return self._clock_rate

    def increase_timer_rate(self) -> int:
        self._timer_rate = step_rate(self._timer_rate, TIMER_STEP, MIN_TIMER_HZ, MAX_TIMER_HZ)
        logger.debug("Timer rate %d Hz", self._timer_rate)
        return self._timer_rate

    def decrease_timer_rate(self) -> int:
        self._timer_rate = step_rate(self._timer_rate, -TIMER_STEP, MIN_TIMER_HZ, MAX_TIMER_HZ)
        logger.debug("Timer rate %d Hz", self._timer_rate)
        return self._timer_rate

    # =============== Execution thread ===============
    def _run(self):
        machine = self.machine
        try:
            self._state = self._execute(machine)
        except RuntimeFault as e:
            self.fault = e
            self._state = State.FAILED
            where = f" at PC {e.pc:03X}" if e.pc is not None else ""
            logger.error("%s%s", e, where)
        except Exception:
            self._state = State.FAILED
            logger.exception("Execution thread crashed")
            raise
        finally:
            logger.info("Execution ended: %s", self._state.value)
            self.notifications.put(Notification(Event.END_OF_EXECUTION, self._state))

    def _execute(self, machine: Chip8) -> State:
        while True:
            with self._cond:
                if self._paused and not self._cancelled:
                    self._state = State.PAUSED
                    self._cond.wait_for(lambda: not self._paused or self._cancelled)
                    # time spent paused does not count down the timers
                    machine.timers.restart()
                if self._cancelled:
                    return State.CANCELLED
                self._state = State.RUNNING

            if machine.finished:
                return State.TERMINATED

            time.sleep(1.0 / self._clock_rate)
            machine.step()

            if machine.awaiting_key is not None:
                self._state = State.WAITING_FOR_KEY
                self.notifications.put(Notification(Event.WAITING_FOR_KEY, self._state))
                if not self._wait_for_key(machine):
                    return State.CANCELLED
                machine.awaiting_key = None
                self._state = State.RUNNING

            machine.timers.rate = self._timer_rate
            machine.timers.tick()

    def _wait_for_key(self, machine: Chip8) -> bool:
        """Block until the awaited key arrives, counting the timers down meanwhile.

        Returns False if the controller was cancelled first.
        """
        while True:
            period = 1.0 / self._timer_rate
            if self.keypad.wait_for(machine.awaiting_key, lambda: self._cancelled, period):
                return True
            if self._cancelled:
                return False
            machine.timers.rate = self._timer_rate
            machine.timers.tick()
