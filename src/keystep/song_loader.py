"""Import MIDI files into the Song model."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence

from keystep.analysis.difficulty import estimate
from keystep.config import DEFAULT_KEY_SIGNATURE, MELODY_TRACK_KEYWORDS
from keystep.errors import (
    EmptyFile,
    InvalidFormat,
    NoNotes,
    NoNotesAfterSimplification,
    NoNotesInRange,
    SongLoadError,
)
from keystep.midi_decoder import DecodedMidi, TrackData, decode, first_bpm, first_time_signature
from keystep.models import MidiMetadata, Note, Song
from keystep.simplify import ConversionOptions, simplify_notes, to_notes

__all__ = [
    "BatchResult",
    "EmptyFile",
    "ImportFailure",
    "InvalidFormat",
    "NoNotes",
    "NoNotesAfterSimplification",
    "NoNotesInRange",
    "SongLoadError",
    "assemble_song",
    "import_batch",
    "load_song",
    "parse_midi_to_song",
    "select_track",
]

logger = logging.getLogger(__name__)


def select_track(tracks: Sequence[TrackData]) -> TrackData:
    """Pick the track most likely to carry the melody.

    The track with the most notes wins, unless a non-empty track is named
    like a melody part ("melody", "lead", "vocal", "main", "piano"), in which
    case the first such track wins.

    Raises:
        EmptyFile: If there are no tracks.
        NoNotes: If the chosen track has no notes.
    """
    if not tracks:
        raise EmptyFile("The MIDI file contains no tracks")

    chosen = max(tracks, key=lambda t: len(t.notes))
    for track in tracks:
        name = (track.name or "").lower()
        if track.notes and any(keyword in name for keyword in MELODY_TRACK_KEYWORDS):
            chosen = track
            break

    if not chosen.notes:
        raise NoNotes("No notes found in the MIDI file")
    return chosen


def assemble_song(decoded: DecodedMidi, notes: Sequence[Note], metadata: MidiMetadata) -> Song:
    """Combine header metadata, simplified notes and caller metadata into a Song."""
    ordered = tuple(sorted(notes, key=lambda n: n.start_time))
    bpm = first_bpm(decoded)
    difficulty = metadata.difficulty or estimate(ordered, bpm).level

    return Song(
        id=metadata.id,
        title=metadata.title,
        artist=metadata.artist,
        difficulty=difficulty,
        category=metadata.category,
        bpm=bpm,
        duration=max(n.end_time for n in ordered),
        notes=ordered,
        key_signature=metadata.key_signature or DEFAULT_KEY_SIGNATURE,
        time_signature=first_time_signature(decoded),
        description=metadata.description or f"Imported from MIDI with {len(ordered)} notes.",
    )


def parse_midi_to_song(
    buffer: bytes,
    metadata: MidiMetadata,
    options: ConversionOptions | None = None,
    filename: str | None = None,
) -> Song:
    """Validate, decode, simplify and assemble a MIDI buffer into a Song.

    Raises:
        SongLoadError: Or one of its subclasses, tagged with the failing stage.
    """
    opts = options or ConversionOptions()
    stage = "decode"
    try:
        decoded = decode(buffer)
        stage = "select"
        track = select_track(decoded.tracks)
        stage = "simplify"
        notes = simplify_notes(to_notes(track.notes, opts.min_note_duration), opts)
        stage = "assemble"
        return assemble_song(decoded, notes, metadata)
    except SongLoadError as exc:
        exc.filename = exc.filename or filename
        raise
    except Exception as exc:
        raise SongLoadError(f"Failed to process MIDI data: {exc}", filename=filename, stage=stage) from exc


def load_song(
    file_path: str | Path,
    metadata: MidiMetadata | None = None,
    options: ConversionOptions | None = None,
) -> Song:
    """Load a .mid or .midi file and return a Song.

    Metadata defaults to the file stem for id and title.

    Raises:
        SongLoadError: If the file cannot be read or converted.
    """
    path = Path(file_path)
    if path.suffix.lower() not in (".mid", ".midi"):
        raise InvalidFormat(f"Unsupported file format: {path.suffix}", filename=path.name)
    try:
        buffer = path.read_bytes()
    except OSError as exc:
        raise SongLoadError(f"Failed to read file: {exc}", filename=path.name, stage="read") from exc

    if metadata is None:
        metadata = MidiMetadata(id=path.stem, title=path.stem, artist="Unknown", category="imported")
    return parse_midi_to_song(buffer, metadata, options, filename=path.name)


@dataclass
class ImportFailure:
    filename: str
    stage: str
    message: str


@dataclass
class BatchResult:
    songs: list[Song] = field(default_factory=list)
    failures: list[ImportFailure] = field(default_factory=list)


def import_batch(
    files: Iterable[tuple[str, bytes]],
    metadata_for: Callable[[str, int], MidiMetadata],
    options: ConversionOptions | None = None,
    max_workers: int = 1,
) -> BatchResult:
    """Convert many MIDI files; a failing file is logged and skipped.

    Args:
        files: ``(filename, buffer)`` pairs.
        metadata_for: Builds the metadata for a file from its name and index.
        options: Conversion options shared by every file.
        max_workers: Files converted in parallel. Results keep input order
            regardless of completion order.
    """
    items = list(files)

    def convert(index: int, name: str, buffer: bytes) -> Song | ImportFailure:
        try:
            return parse_midi_to_song(buffer, metadata_for(name, index), options, filename=name)
        except SongLoadError as exc:
            logger.warning("Skipping %s: %s", name, exc)
            return ImportFailure(filename=name, stage=exc.stage, message=exc.message)
        except Exception as exc:
            logger.warning("Skipping %s: %s", name, exc)
            return ImportFailure(filename=name, stage="metadata", message=str(exc))

    if max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(convert, i, name, buf) for i, (name, buf) in enumerate(items)]
            outcomes = [f.result() for f in futures]
    else:
        outcomes = [convert(i, name, buf) for i, (name, buf) in enumerate(items)]

    result = BatchResult()
    for outcome in outcomes:
        if isinstance(outcome, ImportFailure):
            result.failures.append(outcome)
        else:
            result.songs.append(outcome)
    logger.info("Imported %d of %d MIDI files", len(result.songs), len(items))
    return result
