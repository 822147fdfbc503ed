import random
import time

import pytest

from chip8vm.machine import Chip8


def assemble(*words: int) -> bytes:
    """Pack 16-bit opcodes big-endian, the way programs are stored."""
    out = bytearray()
    for w in words:
        out += bytes([(w >> 8) & 0xFF, w & 0xFF])
    return bytes(out)


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def make_machine():
    def _make(*words: int) -> Chip8:
        chip = Chip8(rng=random.Random(1234))
        chip.load_program(assemble(*words))
        return chip
    return _make
