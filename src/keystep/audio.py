"""Audio synthesis via FluidSynth + SoundFonts."""

from __future__ import annotations

import sys
import time
from pathlib import Path

import fluidsynth

from keystep.models import key_to_pitch

DEFAULT_NOTE_SECONDS = 0.5


def _detect_audio_driver() -> str:
    """Auto-detect the appropriate FluidSynth audio driver for the platform."""
    if sys.platform == "linux":
        return "pulseaudio"
    elif sys.platform == "darwin":
        return "coreaudio"
    elif sys.platform == "win32":
        return "dsound"
    return "alsa"


class AudioEngine:
    """Wraps FluidSynth; plays tutorial notes and the soundtrack preview."""

    def __init__(
        self,
        soundfont_path: str | Path | None = None,
        note_seconds: float = DEFAULT_NOTE_SECONDS,
        velocity: int = 80,
    ) -> None:
        self.fs = fluidsynth.Synth(gain=0.8)
        self.fs.start(driver=_detect_audio_driver())
        self._sfid: int | None = None
        self._note_seconds = note_seconds
        self._velocity = velocity
        self._pending_offs: list[tuple[float, int, int]] = []  # (off_time, pitch, channel)
        if soundfont_path:
            self.load_soundfont(soundfont_path)

    def load_soundfont(self, path: str | Path) -> None:
        self._sfid = self.fs.sfload(str(path))
        self.fs.program_select(0, self._sfid, 0, 0)

    def play_note_with_octave(self, note: str, octave: int) -> None:
        """Sound ``note`` (e.g. "C#") in ``octave`` for the configured length."""
        pitch = key_to_pitch(f"{note}{octave}")
        self.fs.noteon(0, pitch, self._velocity)
        self._pending_offs.append((time.time() + self._note_seconds, pitch, 0))

    def note_on(self, key: str, channel: int = 0) -> None:
        self.fs.noteon(channel, key_to_pitch(key), self._velocity)

    def note_off(self, key: str, channel: int = 0) -> None:
        self.fs.noteoff(channel, key_to_pitch(key))

    def flush_pending_offs(self) -> None:
        """Call each frame to release notes whose duration has elapsed."""
        now = time.time()
        remaining: list[tuple[float, int, int]] = []
        for off_time, pitch, channel in self._pending_offs:
            if now >= off_time:
                self.fs.noteoff(channel, pitch)
            else:
                remaining.append((off_time, pitch, channel))
        self._pending_offs = remaining

    def all_notes_off(self) -> None:
        for pitch in range(128):
            self.fs.noteoff(0, pitch)
        self._pending_offs.clear()

    def shutdown(self) -> None:
        self.all_notes_off()
        self.fs.delete()
