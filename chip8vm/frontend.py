"""
Pygame host window: renders the pixel buffer and feeds keys to the controller.

Hotkeys:

  Space   pause / resume
  F1 F2   clock rate down / up
  F3 F4   timer rate down / up
  F5      reset (starts paused)
  Escape  quit
"""
from __future__ import annotations
import logging
from typing import List, Optional

import numpy as np
import pygame

from .controller import Controller, Event, State
from .machine import SCREEN_H, SCREEN_W

logger = logging.getLogger(__name__)

FPS = 60
FOREGROUND = (255, 255, 255)
BACKGROUND = (0, 0, 0)
HOTKEYS = (pygame.K_SPACE, pygame.K_F1, pygame.K_F2, pygame.K_F3,
           pygame.K_F4, pygame.K_F5, pygame.K_ESCAPE)


class Frontend:
    def __init__(self, controller: Controller, scale: int = 10, title: str = "chip8vm"):
        self.controller = controller
        self.scale = max(1, int(scale))
        self.title = title
        self.surface = pygame.display.set_mode(
            (SCREEN_W * self.scale, SCREEN_H * self.scale))
        self.clock = pygame.time.Clock()
        self.held: List[int] = []
        self._sent_key: Optional[int] = None
        self.running = True

    def handle_events(self):
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN:
                if event.key in HOTKEYS:
                    self._hotkey(event.key)
                elif event.key not in self.held:
                    self.held.append(event.key)
            elif event.type == pygame.KEYUP:
                if event.key in self.held:
                    self.held.remove(event.key)

        # only the first held key is visible to the machine
        current = self.held[0] if self.held else None
        if current != self._sent_key:
            if current is None:
                self.controller.release()
            else:
                self.controller.press(current)
            self._sent_key = current

    def _hotkey(self, key: int):
        ctl = self.controller
        if key == pygame.K_ESCAPE:
            self.running = False
        elif key == pygame.K_SPACE:
            if not ctl.state.is_final:
                ctl.toggle_pause()
        elif key == pygame.K_F1:
            ctl.decrease_clock_rate()
        elif key == pygame.K_F2:
            ctl.increase_clock_rate()
        elif key == pygame.K_F3:
            ctl.decrease_timer_rate()
        elif key == pygame.K_F4:
            ctl.increase_timer_rate()
        elif key == pygame.K_F5:
            ctl.reset(paused=True)
            self._sent_key = None

    def handle_notifications(self):
        for note in self.controller.poll():
            if note.event is Event.WAITING_FOR_KEY:
                logger.debug("Waiting for a key press")
            elif note.event is Event.END_OF_EXECUTION:
                logger.info("Program stopped (%s)", note.state.value)

    def render(self):
        pixels = np.frombuffer(bytes(self.controller.display), dtype=np.uint8)
        pixels = pixels.reshape(SCREEN_H, SCREEN_W).T
        rgb = np.where(pixels[:, :, None] == 1,
                       np.array(FOREGROUND, dtype=np.uint8),
                       np.array(BACKGROUND, dtype=np.uint8))
        frame = pygame.surfarray.make_surface(rgb)
        self.surface.blit(pygame.transform.scale(frame, self.surface.get_size()), (0, 0))
        pygame.display.flip()

    def caption(self) -> str:
        ctl = self.controller
        text = f"{self.title} - CPU {ctl.clock_rate} Hz - Timer {ctl.timer_rate} Hz"
        if ctl.state is not State.RUNNING:
            text += f" [{ctl.state.value}]"
        return text

    def run(self):
        while self.running:
            self.handle_events()
            self.handle_notifications()
            self.render()
            pygame.display.set_caption(self.caption())
            self.clock.tick(FPS)

        self.controller.cancel()
        self.controller.join()
