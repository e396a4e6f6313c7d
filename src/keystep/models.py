"""Core data models shared across the importer and the tutorial."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence, Union

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
NATURAL_ORDER = ["C", "D", "E", "F", "G", "A", "B"]

_FLAT_TO_SHARP = {"Db": "C#", "Eb": "D#", "Gb": "F#", "Ab": "G#", "Bb": "A#"}

_KEY_RE = re.compile(r"^[A-G]#?\d+$")
_PITCH_RE = re.compile(r"^([A-G][#b]?)(\d+)$")


class UnrecognizedPitch(ValueError):
    """Raised when a pitch string does not parse as a note name plus octave."""


class Difficulty(Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


def parse_pitch(key: str) -> tuple[str, int]:
    """Split ``"C#4"`` into ``("C#", 4)``.

    Flats are accepted and returned with their sharp spelling (``"Db4"`` ->
    ``("C#", 4)``), except ``Cb``/``Fb`` which have no sharp equivalent here.
    """
    match = _PITCH_RE.match(key)
    if not match:
        raise UnrecognizedPitch(f"Unrecognized pitch: {key!r}")
    name, octave = match.groups()
    if name.endswith("b"):
        if name not in _FLAT_TO_SHARP:
            raise UnrecognizedPitch(f"Unrecognized pitch: {key!r}")
        name = _FLAT_TO_SHARP[name]
    return name, int(octave)


def key_to_pitch(key: str) -> int:
    """Convert a note key to its MIDI number (C4 = 60)."""
    name, octave = parse_pitch(key)
    pitch = (octave + 1) * 12 + NOTE_NAMES.index(name)
    if pitch > 127:
        raise UnrecognizedPitch(f"Pitch out of MIDI range: {key!r}")
    return pitch


def pitch_to_key(pitch: int) -> str:
    """Convert a MIDI number to a sharp-spelled note key (60 -> "C4")."""
    return f"{NOTE_NAMES[pitch % 12]}{pitch // 12 - 1}"


@dataclass(frozen=True)
class Note:
    """A single note of a song, timed in integer milliseconds."""

    key: str  # e.g. "C#4"
    start_time: int  # ms from song start
    duration: int  # ms

    def __post_init__(self) -> None:
        if not _KEY_RE.match(self.key):
            raise UnrecognizedPitch(f"Invalid note key: {self.key!r}")
        if self.start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {self.start_time}")
        if self.duration <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration}")

    @property
    def pitch_class(self) -> str:
        return self.key.rstrip("0123456789")

    @property
    def octave(self) -> int:
        return int(self.key[len(self.pitch_class):])

    @property
    def is_sharp(self) -> bool:
        return "#" in self.key

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration


@dataclass(frozen=True)
class SingleNote:
    note: Note

    @property
    def notes(self) -> tuple[Note, ...]:
        return (self.note,)

    @property
    def keys(self) -> frozenset[str]:
        return frozenset({self.note.key})

    @property
    def start_time(self) -> int:
        return self.note.start_time

    @property
    def size(self) -> int:
        return 1


@dataclass(frozen=True)
class Chord:
    """Notes that start close enough together to be played as one."""

    notes: tuple[Note, ...]

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(n.key for n in self.notes)

    @property
    def start_time(self) -> int:
        return self.notes[0].start_time

    @property
    def size(self) -> int:
        return len(self.notes)


NoteGroup = Union[SingleNote, Chord]


def make_group(notes: Sequence[Note]) -> NoteGroup:
    if not notes:
        raise ValueError("A note group needs at least one note")
    if len(notes) == 1:
        return SingleNote(notes[0])
    return Chord(tuple(notes))


def group_simultaneous(notes: Iterable[Note], tolerance_ms: int) -> list[list[Note]]:
    """Group notes whose start times fall within ``tolerance_ms`` of each other.

    Notes are sorted by start time and swept once from left to right. A note
    joins the current group when it starts within ``tolerance_ms`` of the
    group's FIRST note (its anchor), otherwise it opens a new group. Two notes
    can therefore share a group while being further apart than the tolerance
    from each other, and a note close to the previous note but far from the
    anchor starts a new group.
    """
    groups: list[list[Note]] = []
    for note in sorted(notes, key=lambda n: n.start_time):
        if groups and abs(note.start_time - groups[-1][0].start_time) <= tolerance_ms:
            groups[-1].append(note)
        else:
            groups.append([note])
    return groups


def chord_at(notes: Sequence[Note], index: int, tolerance_ms: int) -> NoteGroup | None:
    """Return the group anchored at ``notes[index]`` of a start-sorted sequence."""
    if index >= len(notes):
        return None
    anchor = notes[index]
    end = index + 1
    while end < len(notes) and notes[end].start_time - anchor.start_time <= tolerance_ms:
        end += 1
    return make_group(notes[index:end])


@dataclass(frozen=True)
class MidiMetadata:
    """Caller-supplied description of a MIDI file being imported."""

    id: str
    title: str
    artist: str
    category: str
    key_signature: str | None = None
    difficulty: Difficulty | None = None
    description: str | None = None


@dataclass(frozen=True)
class Song:
    """An assembled, playable song. Immutable once built."""

    id: str
    title: str
    artist: str
    difficulty: Difficulty
    category: str
    bpm: float
    duration: int  # ms, end of the last-sounding note
    notes: tuple[Note, ...]
    key_signature: str = "C major"
    time_signature: str = "4/4"
    description: str = ""

    def __post_init__(self) -> None:
        if not self.notes:
            raise ValueError("A song needs at least one note")
        if self.bpm <= 0:
            raise ValueError(f"bpm must be positive, got {self.bpm}")
        starts = [n.start_time for n in self.notes]
        if starts != sorted(starts):
            raise ValueError("Song notes must be sorted by start_time")
        last_end = max(n.end_time for n in self.notes)
        if self.duration < last_end:
            raise ValueError(f"duration {self.duration} ends before the last note ({last_end})")


@dataclass(frozen=True)
class SongProgress:
    song_id: str
    completed_notes: int = 0
    total_notes: int = 0
    accuracy: float = 0.0  # percentage, one decimal
    best_score: float = 0.0
    last_played_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Recording:
    """A performance captured from the keyboard."""

    id: str
    title: str
    artist: str
    notes: tuple[Note, ...] = ()
    bpm: float = 120
    duration: int = 0  # ms
    key_signature: str = "C major"
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)


# JSON shapes used by the application's storage and backend API


def _note_to_dict(note: Note) -> dict[str, Any]:
    return {"key": note.key, "startTime": note.start_time, "duration": note.duration}


def _note_from_dict(data: dict[str, Any]) -> Note:
    return Note(key=data["key"], start_time=int(data["startTime"]), duration=int(data["duration"]))


def song_to_dict(song: Song) -> dict[str, Any]:
    return {
        "id": song.id,
        "title": song.title,
        "artist": song.artist,
        "difficulty": song.difficulty.value,
        "category": song.category,
        "bpm": song.bpm,
        "duration": song.duration,
        "notes": [_note_to_dict(n) for n in song.notes],
        "keySignature": song.key_signature,
        "timeSignature": song.time_signature,
        "description": song.description,
    }


def song_from_dict(data: dict[str, Any]) -> Song:
    notes = sorted((_note_from_dict(n) for n in data["notes"]), key=lambda n: n.start_time)
    return Song(
        id=data["id"],
        title=data["title"],
        artist=data["artist"],
        difficulty=Difficulty(data["difficulty"]),
        category=data["category"],
        bpm=data["bpm"],
        duration=int(data["duration"]),
        notes=tuple(notes),
        key_signature=data.get("keySignature") or "C major",
        time_signature=data.get("timeSignature") or "4/4",
        description=data.get("description") or "",
    )


def recording_to_dict(recording: Recording) -> dict[str, Any]:
    return {
        "id": recording.id,
        "title": recording.title,
        "artist": recording.artist,
        "bpm": recording.bpm,
        "duration": recording.duration,
        "notes": [_note_to_dict(n) for n in recording.notes],
        "keySignature": recording.key_signature,
        "description": recording.description,
        "createdAt": recording.created_at.isoformat(),
    }


def recording_from_dict(data: dict[str, Any]) -> Recording:
    return Recording(
        id=data["id"],
        title=data["title"],
        artist=data["artist"],
        notes=tuple(_note_from_dict(n) for n in data.get("notes", [])),
        bpm=data.get("bpm", 120),
        duration=int(data.get("duration", 0)),
        key_signature=data.get("keySignature") or "C major",
        description=data.get("description") or "",
        created_at=datetime.fromisoformat(data["createdAt"]) if "createdAt" in data else datetime.now(),
    )
