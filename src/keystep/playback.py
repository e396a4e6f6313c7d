"""Soundtrack preview — plays a song's notes through an audio collaborator."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from keystep.config import MAX_PLAYBACK_SPEED, MIN_PLAYBACK_SPEED
from keystep.models import Note, Song


@runtime_checkable
class NotePlayer(Protocol):
    """Audio boundary: sound one note, e.g. ``("C#", 4)``."""
    def play_note_with_octave(self, note: str, octave: int) -> None: ...


def clamp_speed(speed: float) -> float:
    return max(MIN_PLAYBACK_SPEED, min(MAX_PLAYBACK_SPEED, speed))


class PreviewPlayback:
    """Drives reference playback from the host frame loop.

    Each note sounds once the song position reaches its start time. Position
    advances by ``dt * speed``, which is the same as scheduling every note at
    ``start_time / speed`` of wall-clock time.
    """

    def __init__(self, song: Song, player: NotePlayer, speed: float = 1.0) -> None:
        self.song = song
        self.player = player
        self.position: float = 0.0  # ms
        self.note_index: int = 0
        self.speed: float = clamp_speed(speed)
        self.paused: bool = False

    def set_speed(self, speed: float) -> None:
        """Set speed multiplier, clamped to [0.25, 2.0]."""
        self.speed = clamp_speed(speed)

    def rewind(self) -> None:
        self.position = 0.0
        self.note_index = 0

    def update(self, dt: float) -> list[Note]:
        """Advance by dt seconds. Returns notes that started sounding this frame."""
        if self.paused or self.finished:
            return []

        self.position += dt * 1000.0 * self.speed
        started: list[Note] = []
        while self.note_index < len(self.song.notes):
            note = self.song.notes[self.note_index]
            if note.start_time > self.position:
                break
            self.player.play_note_with_octave(note.pitch_class, note.octave)
            started.append(note)
            self.note_index += 1
        return started

    @property
    def finished(self) -> bool:
        return self.note_index >= len(self.song.notes)
