"""Decode Standard MIDI Files into per-track note lists."""

from __future__ import annotations

import io
import logging
from bisect import bisect_right
from dataclasses import dataclass, field

import mido

from keystep.config import DEFAULT_BPM, DEFAULT_TIME_SIGNATURE
from keystep.errors import InvalidFormat
from keystep.models import pitch_to_key

logger = logging.getLogger(__name__)

MIDI_MAGIC = b"MThd"
_DEFAULT_TEMPO = 500_000  # microseconds per beat, 120 BPM


@dataclass
class RawNote:
    pitch: str  # e.g. "C#4"
    time_seconds: float
    duration_seconds: float
    velocity: int = 80


@dataclass
class TrackData:
    name: str | None
    notes: list[RawNote] = field(default_factory=list)


@dataclass
class TempoEvent:
    time_seconds: float
    bpm: float


@dataclass
class TimeSignatureEvent:
    time_seconds: float
    numerator: int
    denominator: int

    @property
    def time_signature(self) -> tuple[int, int]:
        return (self.numerator, self.denominator)


@dataclass
class DecodedMidi:
    tracks: list[TrackData] = field(default_factory=list)
    tempos: list[TempoEvent] = field(default_factory=list)
    time_signatures: list[TimeSignatureEvent] = field(default_factory=list)
    ticks_per_beat: int = 480
    duration: float = 0.0  # seconds, end of the last note


@dataclass
class MidiInfo:
    """Summary of a MIDI file, used to preview it before importing."""

    tracks: int
    notes: int
    duration_ms: int
    bpm: int
    time_signature: str


def is_valid_midi(buffer: bytes) -> bool:
    """Cheap guard: does the buffer start with the MIDI header chunk marker?"""
    return bytes(buffer[:4]) == MIDI_MAGIC


class _TempoMap:
    """Converts absolute ticks to seconds using every tempo change in the file."""

    def __init__(self, changes: list[tuple[int, int]], ticks_per_beat: int) -> None:
        self._ticks_per_beat = ticks_per_beat
        # (tick, tempo, seconds at tick)
        points: list[tuple[int, int, float]] = [(0, _DEFAULT_TEMPO, 0.0)]
        for tick, tempo in sorted(changes, key=lambda c: c[0]):
            last_tick, last_tempo, last_sec = points[-1]
            if tick == last_tick:
                points[-1] = (tick, tempo, last_sec)
                continue
            sec = last_sec + mido.tick2second(tick - last_tick, ticks_per_beat, last_tempo)
            points.append((tick, tempo, sec))
        self._points = points
        self._ticks = [p[0] for p in points]

    def seconds(self, tick: int) -> float:
        idx = bisect_right(self._ticks, tick) - 1
        base_tick, tempo, base_sec = self._points[idx]
        return base_sec + mido.tick2second(tick - base_tick, self._ticks_per_beat, tempo)


def _open(buffer: bytes) -> mido.MidiFile:
    if not is_valid_midi(buffer):
        raise InvalidFormat("File is not a valid MIDI file (missing MThd header)")
    try:
        return mido.MidiFile(file=io.BytesIO(bytes(buffer)))
    except Exception as exc:
        raise InvalidFormat(f"Could not parse MIDI data: {exc}") from exc


def decode(buffer: bytes) -> DecodedMidi:
    """Parse a MIDI byte buffer into tracks of timed notes plus header metadata.

    Raises:
        InvalidFormat: If the buffer is not a parseable Standard MIDI File.
    """
    mid = _open(buffer)
    tpb = mid.ticks_per_beat

    tempo_changes: list[tuple[int, int]] = []
    sig_changes: list[tuple[int, int, int]] = []
    for track in mid.tracks:
        tick = 0
        for msg in track:
            tick += msg.time
            if msg.type == "set_tempo":
                tempo_changes.append((tick, msg.tempo))
            elif msg.type == "time_signature":
                sig_changes.append((tick, msg.numerator, msg.denominator))

    tempo_map = _TempoMap(tempo_changes, tpb)
    decoded = DecodedMidi(ticks_per_beat=tpb)
    decoded.tempos = [
        TempoEvent(time_seconds=tempo_map.seconds(t), bpm=mido.tempo2bpm(tempo))
        for t, tempo in sorted(tempo_changes, key=lambda c: c[0])
    ]
    decoded.time_signatures = [
        TimeSignatureEvent(time_seconds=tempo_map.seconds(t), numerator=num, denominator=den)
        for t, num, den in sorted(sig_changes, key=lambda c: c[0])
    ]

    for track in mid.tracks:
        data = TrackData(name=track.name or None)
        tick = 0
        pending: dict[tuple[int, int], tuple[int, int]] = {}  # (channel, note) -> (start_tick, velocity)

        def close(channel: int, note: int, end_tick: int) -> None:
            start_tick, velocity = pending.pop((channel, note))
            start = tempo_map.seconds(start_tick)
            data.notes.append(RawNote(
                pitch=pitch_to_key(note),
                time_seconds=start,
                duration_seconds=max(tempo_map.seconds(end_tick) - start, 0.0),
                velocity=velocity,
            ))

        for msg in track:
            tick += msg.time
            if msg.type == "note_on" and msg.velocity > 0:
                # Re-struck pitch: close the sounding instance first
                if (msg.channel, msg.note) in pending:
                    close(msg.channel, msg.note, tick)
                pending[(msg.channel, msg.note)] = (tick, msg.velocity)
            elif msg.type in ("note_off", "note_on"):
                if (msg.channel, msg.note) in pending:
                    close(msg.channel, msg.note, tick)

        # Notes never released end with the track
        for channel, note in list(pending):
            close(channel, note, tick)

        data.notes.sort(key=lambda n: n.time_seconds)
        decoded.tracks.append(data)

    ends = [n.time_seconds + n.duration_seconds for t in decoded.tracks for n in t.notes]
    decoded.duration = max(ends, default=0.0)
    logger.debug(
        "Decoded MIDI: %d tracks, %d tempo events, %d time signatures",
        len(decoded.tracks), len(decoded.tempos), len(decoded.time_signatures),
    )
    return decoded


def first_bpm(decoded: DecodedMidi) -> int:
    if decoded.tempos:
        return round(decoded.tempos[0].bpm)
    return DEFAULT_BPM


def first_time_signature(decoded: DecodedMidi) -> str:
    if decoded.time_signatures:
        num, den = decoded.time_signatures[0].time_signature
        return f"{num}/{den}"
    return DEFAULT_TIME_SIGNATURE


def midi_info(buffer: bytes) -> MidiInfo:
    """Summarize a MIDI file without simplifying it."""
    decoded = decode(buffer)
    return MidiInfo(
        tracks=len(decoded.tracks),
        notes=sum(len(t.notes) for t in decoded.tracks),
        duration_ms=round(decoded.duration * 1000),
        bpm=first_bpm(decoded),
        time_signature=first_time_signature(decoded),
    )
