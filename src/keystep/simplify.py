"""Melody simplification — turn a raw MIDI track into a playable single line."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

from keystep.config import (
    DEFAULT_MAX_NOTES_PER_SECOND,
    DEFAULT_MAX_OCTAVE,
    DEFAULT_MIN_NOTE_DURATION_MS,
    DEFAULT_MIN_OCTAVE,
    DEFAULT_QUANTIZE_THRESHOLD_MS,
    IMPORT_CHORD_TOLERANCE_MS,
)
from keystep.errors import NoNotesAfterSimplification, NoNotesInRange
from keystep.midi_decoder import RawNote
from keystep.models import NATURAL_ORDER, Note, group_simultaneous, parse_pitch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionOptions:
    min_octave: int = DEFAULT_MIN_OCTAVE
    max_octave: int = DEFAULT_MAX_OCTAVE
    min_note_duration: int = DEFAULT_MIN_NOTE_DURATION_MS
    quantize_threshold: int = DEFAULT_QUANTIZE_THRESHOLD_MS
    simplify_melody: bool = True
    remove_chords: bool = True
    max_notes_per_second: float = DEFAULT_MAX_NOTES_PER_SECOND

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConversionOptions:
        """Build options from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


_SETTINGS_PATH = Path.home() / ".keystep" / "settings.json"


def load_options(path: Path | None = None) -> ConversionOptions:
    """Load import options from the ``"import"`` section of a settings file.

    Returns defaults if the file is absent or unreadable.
    """
    path = path or _SETTINGS_PATH
    if not path.exists():
        return ConversionOptions()
    try:
        data = json.loads(path.read_text())
        return ConversionOptions.from_dict(data.get("import", {}))
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return ConversionOptions()


def to_notes(raw_notes: Iterable[RawNote], min_note_duration: int) -> list[Note]:
    """Convert decoder output (seconds) to integer-millisecond notes."""
    notes: list[Note] = []
    for raw in raw_notes:
        # Sub-zero octaves (MIDI 0-11) are below any playable range
        if "-" in raw.pitch:
            logger.debug("Dropping note %s below octave 0", raw.pitch)
            continue
        name, octave = parse_pitch(raw.pitch)
        notes.append(Note(
            key=f"{name}{octave}",
            start_time=round(raw.time_seconds * 1000),
            duration=max(round(raw.duration_seconds * 1000), min_note_duration, 1),
        ))
    notes.sort(key=lambda n: n.start_time)
    return notes


def filter_range(notes: Iterable[Note], min_octave: int, max_octave: int) -> list[Note]:
    return [n for n in notes if min_octave <= n.octave <= max_octave]


def _melody_rank(note: Note) -> tuple[int, int, bool]:
    # Highest octave, then highest natural letter, then natural over sharp
    return (note.octave, NATURAL_ORDER.index(note.pitch_class[0]), not note.is_sharp)


def reduce_chords(notes: Iterable[Note], tolerance_ms: int = IMPORT_CHORD_TOLERANCE_MS) -> list[Note]:
    """Keep a single note, the top of the melody, from every simultaneous group."""
    kept = [max(group, key=_melody_rank) for group in group_simultaneous(notes, tolerance_ms)]
    return sorted(kept, key=lambda n: n.start_time)


def collapse_repeats(notes: Iterable[Note], window_ms: int) -> list[Note]:
    """Merge a re-struck note into the previous one when it repeats within the window."""
    kept: list[Note] = []
    for note in sorted(notes, key=lambda n: n.start_time):
        last = kept[-1] if kept else None
        if last is not None and last.key == note.key and note.start_time - last.start_time <= window_ms:
            kept[-1] = replace(last, duration=max(last.duration, note.end_time - last.start_time))
        else:
            kept.append(note)
    return kept


def limit_density(notes: Iterable[Note], max_notes_per_second: float) -> list[Note]:
    """Drop notes starting too soon after the last kept note."""
    ordered = sorted(notes, key=lambda n: n.start_time)
    if max_notes_per_second <= 0:
        return ordered
    min_spacing = 1000 / max_notes_per_second
    kept: list[Note] = []
    for note in ordered:
        if not kept or note.start_time - kept[-1].start_time >= min_spacing:
            kept.append(note)
    return kept


def _quantize_pass(notes: list[Note], threshold: int) -> list[Note]:
    quantized: list[Note] = []
    for note in sorted(notes, key=lambda n: n.start_time):
        start = note.start_time
        if quantized:
            prev_end = quantized[-1].end_time
            if start < prev_end and prev_end - start < threshold:
                start = prev_end
        quantized.append(replace(note, start_time=start, duration=max(note.duration, threshold)))
    return sorted(quantized, key=lambda n: n.start_time)


def quantize(notes: Iterable[Note], threshold: int) -> list[Note]:
    """Remove small overlaps and enforce a minimum duration of ``threshold``.

    A note overlapping the previous note by less than ``threshold`` ms is
    pushed to start where the previous one ends. Larger overlaps are left
    alone. A pushed note can land after a note that used to follow it, so
    passes repeat until nothing moves. Running this twice gives the same
    result as running it once.
    """
    result = _quantize_pass(list(notes), threshold)
    while True:
        again = _quantize_pass(result, threshold)
        if again == result:
            return result
        result = again


def simplify_notes(notes: Iterable[Note], options: ConversionOptions | None = None) -> list[Note]:
    """Run the full simplification pipeline over a track's notes.

    Raises:
        NoNotesInRange: If no note lies within the octave range.
        NoNotesAfterSimplification: If simplification removed every note.
    """
    opts = options or ConversionOptions()

    result = filter_range(sorted(notes, key=lambda n: n.start_time), opts.min_octave, opts.max_octave)
    if not result:
        raise NoNotesInRange(
            f"No notes found in octave range {opts.min_octave}-{opts.max_octave}; "
            "try widening the octave range"
        )

    if opts.simplify_melody:
        if opts.remove_chords:
            result = reduce_chords(result)
        result = collapse_repeats(result, opts.quantize_threshold * 2)
        result = limit_density(result, opts.max_notes_per_second)

    result = quantize(result, opts.quantize_threshold)
    if not result:
        raise NoNotesAfterSimplification(
            "No notes left after simplifying the melody; "
            "try disabling simplification or widening the octave range"
        )
    logger.debug("Simplified melody to %d notes", len(result))
    return result
