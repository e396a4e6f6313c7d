"""Computer keyboard input mapped to piano keys."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import pygame

MIN_BASE_OCTAVE = 0
MAX_BASE_OCTAVE = 7


@dataclass
class KeyEvent:
    key: str  # e.g. "C#4"
    is_press: bool
    timestamp: float


# pygame key -> (note name, octave offset from the base octave)
_BASE_ROW = {
    pygame.K_a: ("C", 0), pygame.K_w: ("C#", 0), pygame.K_s: ("D", 0),
    pygame.K_e: ("D#", 0), pygame.K_d: ("E", 0), pygame.K_f: ("F", 0),
    pygame.K_t: ("F#", 0), pygame.K_g: ("G", 0), pygame.K_y: ("G#", 0),
    pygame.K_h: ("A", 0), pygame.K_u: ("A#", 0), pygame.K_j: ("B", 0),
}
_UPPER_ROW = {
    pygame.K_k: ("C", 1), pygame.K_o: ("C#", 1), pygame.K_l: ("D", 1),
    pygame.K_p: ("D#", 1), pygame.K_SEMICOLON: ("E", 1), pygame.K_z: ("F", 1),
    pygame.K_x: ("G", 1), pygame.K_c: ("A", 1), pygame.K_v: ("B", 1),
}
_TOP_ROW = {
    pygame.K_b: ("C", 2), pygame.K_n: ("D", 2), pygame.K_m: ("E", 2),
    pygame.K_COMMA: ("F", 2), pygame.K_PERIOD: ("G", 2), pygame.K_SLASH: ("A", 2),
}
DEFAULT_KEY_MAPPING: dict[int, tuple[str, int]] = {**_BASE_ROW, **_UPPER_ROW, **_TOP_ROW}


class KeyboardInput:
    """Turns pygame key events into piano key presses.

    Only the first KEYDOWN of a held key produces a press, so auto-repeat never
    reaches the tutorial twice.
    """

    def __init__(
        self,
        base_octave: int = 4,
        mapping: dict[int, tuple[str, int]] | None = None,
    ) -> None:
        self.base_octave = base_octave
        self._mapping = mapping or DEFAULT_KEY_MAPPING
        self._events: list[KeyEvent] = []
        self._held: dict[int, str] = {}  # pygame key -> note key sounding

    def note_for(self, pygame_key: int) -> str | None:
        entry = self._mapping.get(pygame_key)
        if entry is None:
            return None
        name, offset = entry
        return f"{name}{self.base_octave + offset}"

    def feed_event(self, event: pygame.event.Event) -> None:
        """Call from the game loop for each pygame event."""
        if event.type == pygame.KEYDOWN:
            note = self.note_for(event.key)
            if note is not None and event.key not in self._held:
                self._held[event.key] = note
                self._events.append(KeyEvent(key=note, is_press=True, timestamp=time.time()))
        elif event.type == pygame.KEYUP and event.key in self._held:
            note = self._held.pop(event.key)
            self._events.append(KeyEvent(key=note, is_press=False, timestamp=time.time()))

    def poll(self) -> KeyEvent | None:
        if self._events:
            return self._events.pop(0)
        return None

    def drain(
        self,
        on_press: Callable[[str], None],
        on_release: Callable[[str], None] | None = None,
    ) -> int:
        """Deliver every queued event.

        E.g. ``drain(session.handle_key_press)`` for the tutorial, or
        ``drain(engine.note_on, engine.note_off)`` to sound the keys as played.

        Returns the number of presses delivered.
        """
        presses = 0
        while self._events:
            event = self._events.pop(0)
            if event.is_press:
                on_press(event.key)
                presses += 1
            elif on_release is not None:
                on_release(event.key)
        return presses

    def octave_up(self) -> None:
        self.base_octave = min(MAX_BASE_OCTAVE, self.base_octave + 1)

    def octave_down(self) -> None:
        self.base_octave = max(MIN_BASE_OCTAVE, self.base_octave - 1)

    def close(self) -> None:
        self._events.clear()
        self._held.clear()
