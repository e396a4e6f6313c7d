"""Import pipeline errors.

Every error names the file and the pipeline stage it failed in so callers can
explain the failure without digging into internals.
"""

from __future__ import annotations


class SongLoadError(Exception):
    """Raised when a MIDI file cannot be turned into a Song."""

    stage = "load"

    def __init__(self, message: str, filename: str | None = None, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.filename = filename
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename} ({self.stage}): {self.message}"
        return self.message


class InvalidFormat(SongLoadError):
    """The buffer is not a Standard MIDI File."""

    stage = "validate"


class EmptyFile(SongLoadError):
    """The MIDI file has no tracks."""

    stage = "select"


class NoNotes(SongLoadError):
    """The selected track has no notes."""

    stage = "select"


class NoNotesInRange(SongLoadError):
    stage = "simplify"


class NoNotesAfterSimplification(SongLoadError):
    stage = "simplify"
