"""
CHIP-8 machine state and the fetch/decode/execute cycle.

Notes:
- Memory addresses wrap at 4 KiB; nothing here raises IndexError.
- The font lives at 0x000, programs are loaded at 0x200.
- FX55 / FX65 leave I unchanged.
- BNNN uses V0 as the offset.
- Drawing wraps through the flat 2048-pixel buffer, so a sprite leaving the
  right edge continues on the next row and the bottom row continues at the top.
- VF is written after the primary result of an instruction.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .errors import (StackOverflow, StackUnderflow, StartupError,
                     UnsupportedInstruction)
from .keyboard import KeyboardMapper, Keypad
from .timers import Timers

logger = logging.getLogger(__name__)

# ==============================
# Constants
# ==============================
MEM_SIZE = 4096
ADDR_MASK = 0xFFF
START_ADDRESS = 0x200
MAX_PROGRAM_SIZE = MEM_SIZE - START_ADDRESS  # 3584
FONT_ADDRESS = 0x000
GLYPH_SIZE = 5
SCREEN_W, SCREEN_H = 64, 32
SCREEN_SIZE = SCREEN_W * SCREEN_H
STACK_DEPTH = 16

# Classic CHIP-8 4x5 font (each char 5 bytes)
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


def check_program_size(size: int):
    if not 0 < size <= MAX_PROGRAM_SIZE:
        raise StartupError(
            f"Size of program: {size} bytes, acceptable size 1-{MAX_PROGRAM_SIZE} bytes")


def read_program(path) -> bytes:
    """Read a program binary, rejecting anything that cannot be loaded."""
    path = Path(path)
    if not path.is_file():
        raise StartupError(f"File '{path}' doesn't exist")
    check_program_size(path.stat().st_size)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StartupError(f"File '{path}' could not be read: {e}") from e
    check_program_size(len(data))
    return data


@dataclass
class Chip8:
    mapper: KeyboardMapper = field(default_factory=KeyboardMapper)
    keypad: Keypad = field(default_factory=Keypad)
    timers: Timers = field(default_factory=Timers)
    rng: random.Random = field(default_factory=random.Random)
    memory: bytearray = field(default_factory=lambda: bytearray(MEM_SIZE))
    V: bytearray = field(default_factory=lambda: bytearray(16))  # registers V0..VF
    I: int = 0
    pc: int = START_ADDRESS
    stack: List[int] = field(default_factory=list)
    display: bytearray = field(default_factory=lambda: bytearray(SCREEN_SIZE))
    program_end: int = START_ADDRESS
    # host key code FX0A is blocked on, None when not waiting
    awaiting_key: Optional[int] = None

    def __post_init__(self):
        self.memory[FONT_ADDRESS:FONT_ADDRESS + len(FONTSET)] = FONTSET

    def load_program(self, data: bytes):
        check_program_size(len(data))
        self.memory[START_ADDRESS:START_ADDRESS + len(data)] = data
        self.pc = START_ADDRESS
        self.program_end = START_ADDRESS + len(data)
        logger.info("Program loaded (%d bytes)", len(data))

    @property
    def finished(self) -> bool:
        return self.pc >= self.program_end

    # =============== Core fetch/decode/execute cycle ===============
    def fetch_opcode(self) -> int:
        hi = self.memory[self.pc & ADDR_MASK]
        lo = self.memory[(self.pc + 1) & ADDR_MASK]
        return (hi << 8) | lo

    def step(self):
        """Execute one instruction. Raises a RuntimeFault on bad programs."""
        opcode = self.fetch_opcode()
        self.pc = (self.pc + 2) & ADDR_MASK

        group = opcode >> 12
        nnn = opcode & 0x0FFF
        n = opcode & 0x000F
        x = (opcode & 0x0F00) >> 8
        y = (opcode & 0x00F0) >> 4
        kk = opcode & 0x00FF
        V = self.V

        if group == 0x0:
            if opcode == 0x00E0:  # CLS
                self.display[:] = bytes(SCREEN_SIZE)
            elif opcode == 0x00EE:  # RET
                if not self.stack:
                    raise StackUnderflow("Return with an empty call stack", self.pc - 2)
                self.pc = self.stack.pop()
            else:  # 0NNN machine-code calls are not emulated
                self._unsupported(opcode)
        elif group == 0x1:  # JP addr
            self.pc = nnn
        elif group == 0x2:  # CALL addr
            if len(self.stack) >= STACK_DEPTH:
                raise StackOverflow(
                    f"Call nested deeper than {STACK_DEPTH} levels", self.pc - 2)
            self.stack.append(self.pc)
            self.pc = nnn
        elif group == 0x3:  # SE Vx, byte
            if V[x] == kk:
                self._skip()
        elif group == 0x4:  # SNE Vx, byte
            if V[x] != kk:
                self._skip()
        elif group == 0x5 and n == 0:  # SE Vx, Vy
            if V[x] == V[y]:
                self._skip()
        elif group == 0x6:  # LD Vx, byte
            V[x] = kk
        elif group == 0x7:  # ADD Vx, byte
            V[x] = (V[x] + kk) & 0xFF
        elif group == 0x8:
            self._alu(opcode, x, y, n)
        elif group == 0x9 and n == 0:  # SNE Vx, Vy
            if V[x] != V[y]:
                self._skip()
        elif group == 0xA:  # LD I, addr
            self.I = nnn
        elif group == 0xB:  # JP V0, addr
            self.pc = (nnn + V[0]) & ADDR_MASK
        elif group == 0xC:  # RND Vx, byte
            V[x] = self.rng.randint(0, 255) & kk
        elif group == 0xD:  # DRW Vx, Vy, nibble
            self._draw_sprite(V[x], V[y], n)
        elif group == 0xE and kk == 0x9E:  # SKP Vx
            if self.keypad.is_pressed(self.mapper.map(V[x])):
                self._skip()
        elif group == 0xE and kk == 0xA1:  # SKNP Vx
            if not self.keypad.is_pressed(self.mapper.map(V[x])):
                self._skip()
        elif group == 0xF:
            self._misc(opcode, x, kk)
        else:
            self._unsupported(opcode)

    def _alu(self, opcode: int, x: int, y: int, n: int):
        V = self.V
        if n == 0x0:  # LD Vx, Vy
            V[x] = V[y]
        elif n == 0x1:  # OR Vx, Vy
            V[x] |= V[y]
        elif n == 0x2:  # AND Vx, Vy
            V[x] &= V[y]
        elif n == 0x3:  # XOR Vx, Vy
            V[x] ^= V[y]
        elif n == 0x4:  # ADD Vx, Vy
            total = V[x] + V[y]
            V[x] = total & 0xFF
            V[0xF] = 1 if total > 0xFF else 0
        elif n == 0x5:  # SUB Vx, Vy (Vx = Vx - Vy)
            flag = 1 if V[x] >= V[y] else 0
            V[x] = (V[x] - V[y]) & 0xFF
            V[0xF] = flag
        elif n == 0x6:  # SHR Vx
            flag = V[x] & 0x1
            V[x] >>= 1
            V[0xF] = flag
        elif n == 0x7:  # SUBN Vx, Vy (Vx = Vy - Vx)
            flag = 1 if V[y] >= V[x] else 0
            V[x] = (V[y] - V[x]) & 0xFF
            V[0xF] = flag
        elif n == 0xE:  # SHL Vx
            flag = (V[x] >> 7) & 0x1
            V[x] = (V[x] << 1) & 0xFF
            V[0xF] = flag
        else:
            self._unsupported(opcode)

    def _misc(self, opcode: int, x: int, kk: int):
        V = self.V
        if kk == 0x07:  # LD Vx, DT
            V[x] = self.timers.delay
        elif kk == 0x0A:  # wait for the key mapped to Vx
            wanted = self.mapper.map(V[x])
            if not self.keypad.take(wanted):
                self.awaiting_key = wanted
        elif kk == 0x15:  # LD DT, Vx
            self.timers.delay = V[x]
        elif kk == 0x18:  # LD ST, Vx
            self.timers.sound = V[x]
        elif kk == 0x1E:  # ADD I, Vx
            self.I = (self.I + V[x]) & ADDR_MASK
        elif kk == 0x29:  # LD F, Vx
            self.I = FONT_ADDRESS + (V[x] & 0xF) * GLYPH_SIZE
        elif kk == 0x33:  # LD B, Vx (BCD)
            val = V[x]
            self.memory[self.I] = val // 100
            self.memory[(self.I + 1) & ADDR_MASK] = (val // 10) % 10
            self.memory[(self.I + 2) & ADDR_MASK] = val % 10
        elif kk == 0x55:  # LD [I], Vx
            for i in range(x + 1):
                self.memory[(self.I + i) & ADDR_MASK] = V[i]
        elif kk == 0x65:  # LD Vx, [I]
            for i in range(x + 1):
                V[i] = self.memory[(self.I + i) & ADDR_MASK]
        else:
            self._unsupported(opcode)

    # =============== Helpers ===============
    def _skip(self):
        self.pc = (self.pc + 2) & ADDR_MASK

    def _unsupported(self, opcode: int):
        raise UnsupportedInstruction(opcode, (self.pc - 2) & ADDR_MASK)

    def _draw_sprite(self, x_pos: int, y_pos: int, height: int):
        collision = 0
        for row in range(height):
            sprite = self.memory[(self.I + row) & ADDR_MASK]
            for col in range(8):
                bit = (sprite >> (7 - col)) & 1
                if bit:
                    idx = ((x_pos + col) + (y_pos + row) * SCREEN_W) % SCREEN_SIZE
                    if self.display[idx] == 1:
                        collision = 1
                    self.display[idx] ^= 1
        self.V[0xF] = collision
