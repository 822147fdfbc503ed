"""Exceptions raised by the CHIP-8 machine and its collaborators."""
from __future__ import annotations


class Chip8Error(Exception):
    """Base class for every error raised by chip8vm."""


class StartupError(Chip8Error):
    """The program cannot be loaded; nothing has been executed yet."""


class RuntimeFault(Chip8Error):
    """Fatal to the machine that raised it."""

    def __init__(self, message: str, pc: int | None = None):
        super().__init__(message)
        self.pc = pc


class UnsupportedInstruction(RuntimeFault):
    def __init__(self, opcode: int, pc: int | None = None):
        super().__init__(f"Unsupported instruction: 0x{opcode:04X}", pc)
        self.opcode = opcode


class StackOverflow(RuntimeFault):
    pass


class StackUnderflow(RuntimeFault):
    pass


class ConfigurationWarning(Chip8Error):
    """A keyboard layout descriptor could not be used."""
