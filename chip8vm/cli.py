"""
Command line entry point.

Run:
  chip8vm path/to/rom [--scale 10] [--clock 700] [--timer-rate 60]

A keyboard layout is read from ``<rom>.kb`` when present, or from the file
given with --layout.
"""
from __future__ import annotations
import argparse
import logging
import random
import sys

from .controller import CLOCK_HZ, Controller, State
from .errors import StartupError
from .keyboard import KeyboardMapper
from .machine import read_program
from .timers import TIMER_HZ

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chip8vm", description="CHIP-8 emulator")
    parser.add_argument("rom", help="Path to CHIP-8 ROM")
    parser.add_argument("--scale", type=int, default=10,
                        help="Pixel scale factor (default 10)")
    parser.add_argument("--clock", type=int, default=CLOCK_HZ,
                        help=f"CPU clock in Hz, 200-1000 (default {CLOCK_HZ})")
    parser.add_argument("--timer-rate", type=int, default=TIMER_HZ,
                        help=f"Timer rate in Hz, 20-80 (default {TIMER_HZ})")
    parser.add_argument("--layout",
                        help="Keyboard layout file (default: ROM path + '.kb')")
    parser.add_argument("--seed", type=int,
                        help="Seed for the random number instruction")
    parser.add_argument("--paused", action="store_true",
                        help="Start paused (Space resumes)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="[%(levelname)s] %(name)s: %(message)s")

    try:
        program = read_program(args.rom)
    except StartupError as e:
        logger.error("%s", e)
        return 1

    mapper = KeyboardMapper.from_file(args.layout or args.rom + ".kb")
    rng = random.Random(args.seed) if args.seed is not None else None
    controller = Controller(program, mapper, clock_rate=args.clock,
                            timer_rate=args.timer_rate, rng=rng)

    # imported late so --help and startup errors work without a display
    import pygame
    from .frontend import Frontend

    pygame.init()
    try:
        frontend = Frontend(controller, scale=args.scale, title=f"chip8vm - {args.rom}")
        controller.start(paused=args.paused)
        frontend.run()
    finally:
        controller.cancel()
        controller.join()
        pygame.quit()

    if controller.state is State.FAILED:
        return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
