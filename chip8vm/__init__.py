"""CHIP-8 virtual machine with a background execution loop."""
from .controller import Controller, Event, Notification, State
from .errors import (Chip8Error, ConfigurationWarning, RuntimeFault,
                     StackOverflow, StackUnderflow, StartupError,
                     UnsupportedInstruction)
from .keyboard import KeyboardMapper, Keypad, parse_layout
from .machine import Chip8, read_program
from .timers import Timers

__version__ = "0.1.0"
