"""Recording — capture a performance and export it as a MIDI file."""

from __future__ import annotations

import io
import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import mido

from keystep.config import DEFAULT_BPM, DEFAULT_KEY_SIGNATURE, MIN_RECORDED_NOTE_MS
from keystep.models import Note, Recording, UnrecognizedPitch, key_to_pitch

logger = logging.getLogger(__name__)

_TICKS_PER_BEAT = 480
_VELOCITY = 80


class Recorder:
    """Collects key presses and releases into timed notes."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._recording = False
        self._paused = False
        self._start: float = 0.0
        self._held: dict[str, float] = {}  # key -> press time (seconds, clock)
        self._notes: list[Note] = []

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def is_paused(self) -> bool:
        return self._paused

    def elapsed_ms(self) -> int:
        if not self._recording:
            return 0
        return round((self._clock() - self._start) * 1000)

    def start(self) -> None:
        self._recording = True
        self._paused = False
        self._start = self._clock()
        self._held.clear()
        self._notes.clear()

    def pause(self) -> None:
        """Pause and close every held note."""
        if not self._recording:
            return
        self._paused = True
        self._close_held()

    def resume(self) -> None:
        self._paused = False

    def note_on(self, key: str) -> None:
        if self._recording and not self._paused and key not in self._held:
            self._held[key] = self._clock()

    def note_off(self, key: str) -> None:
        if key in self._held:
            self._finish(key, self._held.pop(key), self._clock())

    def stop(
        self,
        title: str = "Recording",
        artist: str = "User",
        bpm: float = DEFAULT_BPM,
        description: str = "",
    ) -> Recording:
        """Stop recording and return the captured notes as a Recording."""
        self._close_held()
        self._recording = False
        self._paused = False

        notes = tuple(sorted(self._notes, key=lambda n: n.start_time))
        duration = max((n.end_time for n in notes), default=0)
        return Recording(
            id=uuid.uuid4().hex,
            title=title,
            artist=artist,
            notes=notes,
            bpm=bpm,
            duration=duration,
            key_signature=DEFAULT_KEY_SIGNATURE,
            description=description,
        )

    def _close_held(self) -> None:
        now = self._clock()
        for key, pressed_at in self._held.items():
            self._finish(key, pressed_at, now)
        self._held.clear()

    def _finish(self, key: str, pressed_at: float, released_at: float) -> None:
        duration = round((released_at - pressed_at) * 1000)
        if duration <= MIN_RECORDED_NOTE_MS:
            logger.debug("Dropping %s: held only %d ms", key, duration)
            return
        start = max(round((pressed_at - self._start) * 1000), 0)
        self._notes.append(Note(key=key, start_time=start, duration=duration))


def _ms_to_ticks(ms: float, bpm: float) -> int:
    return round(mido.second2tick(ms / 1000.0, _TICKS_PER_BEAT, mido.bpm2tempo(bpm)))


def build_midi(recording: Recording) -> mido.MidiFile:
    """Build a single-track MIDI file from a recording.

    Notes whose key cannot be converted are skipped with a warning.
    """
    bpm = recording.bpm or DEFAULT_BPM
    mid = mido.MidiFile(ticks_per_beat=_TICKS_PER_BEAT)
    track = mido.MidiTrack()
    mid.tracks.append(track)

    track.append(mido.MetaMessage("track_name", name=recording.title))
    track.append(mido.MetaMessage("text", text=f"Artist: {recording.artist}"))
    if recording.description:
        track.append(mido.MetaMessage("text", text=f"Description: {recording.description}"))
    track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm)))
    track.append(mido.MetaMessage("time_signature", numerator=4, denominator=4))

    # (tick, order, type, pitch); note_off sorts before note_on at the same tick
    events: list[tuple[int, int, str, int]] = []
    for note in recording.notes:
        try:
            pitch = key_to_pitch(note.key)
        except UnrecognizedPitch as exc:
            logger.warning("Skipping note in export: %s", exc)
            continue
        events.append((_ms_to_ticks(note.start_time, bpm), 1, "note_on", pitch))
        events.append((_ms_to_ticks(note.end_time, bpm), 0, "note_off", pitch))
    events.sort()

    prev_tick = 0
    for tick, _, msg_type, pitch in events:
        velocity = _VELOCITY if msg_type == "note_on" else 0
        track.append(mido.Message(msg_type, note=pitch, velocity=velocity, time=tick - prev_tick))
        prev_tick = tick
    return mid


def export_midi(recording: Recording) -> bytes:
    """Export a recording as Standard MIDI File bytes."""
    buf = io.BytesIO()
    build_midi(recording).save(file=buf)
    return buf.getvalue()


def export_filename(recording: Recording) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", recording.title) + ".mid"


def save_midi(recording: Recording, directory: str | Path) -> Path:
    path = Path(directory) / export_filename(recording)
    path.write_bytes(export_midi(recording))
    return path


def format_duration(ms: int) -> str:
    """Format milliseconds as m:ss."""
    seconds = ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


@dataclass
class ExportInfo:
    filename: str
    filesize: str
    notes: int
    duration: str
    bpm: float


def export_info(recording: Recording) -> ExportInfo:
    """Describe the file an export would produce, without building it."""
    estimated = max(1024, len(recording.notes) * 8 + 512)  # bytes
    filesize = f"{estimated} B" if estimated < 1024 else f"{round(estimated / 1024)} KB"
    return ExportInfo(
        filename=export_filename(recording),
        filesize=filesize,
        notes=len(recording.notes),
        duration=format_duration(recording.duration),
        bpm=recording.bpm or DEFAULT_BPM,
    )
