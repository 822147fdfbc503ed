"""
Host keyboard to CHIP-8 keypad mapping.

Default layout (host key -> CHIP-8 key):

  0 1 2 3 4 5 6 7 8 9  =>  0 .. 9
  q w e r t y          =>  A .. F

A layout descriptor can override single entries. It is a text file with one
``"<chip8 key> <host key code>"`` pair per line, e.g. ``10 97`` maps key A
to host code 97 (``a``). A line containing ``TREATASASCII`` makes every
CHIP-8 key map to the host code of the same value.
"""
from __future__ import annotations
import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .errors import ConfigurationWarning

logger = logging.getLogger(__name__)

# ASCII '0'-'9' then 'q', 'w', 'e', 'r', 't', 'y'; pygame key constants match
DEFAULT_LAYOUT = (48, 49, 50, 51, 52, 53, 54, 55, 56, 57,
                  113, 119, 101, 114, 116, 121)
RAW_SENTINEL = "TREATASASCII"


class KeyboardMapper:
    def __init__(self, table: Optional[Iterable[int]] = None, raw: bool = False):
        self.table: List[int] = list(DEFAULT_LAYOUT if table is None else table)
        if len(self.table) != 16:
            raise ValueError("a keyboard layout needs exactly 16 entries")
        self.raw = raw

    def map(self, chip8_key: int) -> int:
        """Return the host key code that stands for ``chip8_key``."""
        if self.raw:
            return chip8_key
        return self.table[chip8_key & 0xF]

    @classmethod
    def from_file(cls, path) -> "KeyboardMapper":
        """Build a mapper from a layout descriptor, or the defaults if unusable."""
        path = Path(path)
        try:
            lines = path.read_text().splitlines()
            return parse_layout(lines)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Keyboard layout '%s' could not be read (%s); "
                           "using the default layout", path, e)
        except ConfigurationWarning as e:
            logger.warning("Keyboard layout '%s' is invalid: %s; "
                           "using the default layout", path, e)
        return cls()


def parse_layout(lines: Iterable[str]) -> KeyboardMapper:
    """Parse descriptor lines. Raises ConfigurationWarning if any line is bad."""
    table = list(DEFAULT_LAYOUT)
    for lineno, line in enumerate(lines, 1):
        if RAW_SENTINEL in line:
            return KeyboardMapper(table, raw=True)
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) != 2:
            raise ConfigurationWarning(f"line {lineno}: expected two fields, got {line!r}")
        try:
            chip8_key, host_key = int(fields[0]), int(fields[1])
        except ValueError:
            raise ConfigurationWarning(f"line {lineno}: not a pair of integers: {line!r}") from None
        if not 0 <= chip8_key <= 0xF:
            raise ConfigurationWarning(f"line {lineno}: CHIP-8 key {chip8_key} out of range 0-15")
        table[chip8_key] = host_key
    return KeyboardMapper(table)


class Keypad:
    """
    The single pressed host key, shared between the input thread and the
    executing machine.

    ``condition`` may be shared with other state (the controller uses one
    condition for pause, cancellation and keys) so a single ``notify_all``
    wakes whichever wait is pending.
    """

    def __init__(self, condition: Optional[threading.Condition] = None):
        self._cond = condition or threading.Condition()
        self._current: Optional[int] = None

    @property
    def current(self) -> Optional[int]:
        return self._current

    def press(self, host_key: Optional[int]):
        with self._cond:
            self._current = host_key
            self._cond.notify_all()

    def release(self):
        self.press(None)

    def is_pressed(self, host_key: int) -> bool:
        return self._current == host_key

    def take(self, host_key: int) -> bool:
        """Consume the current key if it is ``host_key``."""
        with self._cond:
            if self._current != host_key:
                return False
            self._current = None
            return True

    def wait_for(self, host_key: int, interrupted: Callable[[], bool],
                 timeout: Optional[float] = None) -> bool:
        """
        Block until ``host_key`` is pressed and consume it.

        Returns False without consuming anything if ``interrupted()`` turns
        true first, or once ``timeout`` seconds pass. Must be woken by
        ``notify_all`` on the shared condition.
        """
        with self._cond:
            self._cond.wait_for(lambda: interrupted() or self._current == host_key, timeout)
            if self._current == host_key:
                self._current = None
                return True
            return False
