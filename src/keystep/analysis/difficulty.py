"""Difficulty estimation for simplified melodies.

A fixed scoring table over a handful of surface features. It is a
reproducible heuristic for sorting imported songs, not a music-theoretic
grading.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from keystep.models import Difficulty, Note

FAST_TEMPO_BPM = 140
SHORT_NOTE_MS = 300


@dataclass(frozen=True)
class DifficultyFactors:
    note_count: int
    unique_keys: int
    density: float  # notes per second
    has_sharps: bool
    fast_tempo: bool
    short_notes: bool
    mean_duration: float  # ms


@dataclass(frozen=True)
class DifficultyReport:
    level: Difficulty
    score: int
    factors: DifficultyFactors
    description: str = ""


def difficulty_factors(notes: Sequence[Note], bpm: float) -> DifficultyFactors:
    if not notes:
        return DifficultyFactors(0, 0, 0.0, False, bpm > FAST_TEMPO_BPM, False, 0.0)

    note_count = len(notes)
    mean_duration = sum(n.duration for n in notes) / note_count
    # Song end is the last note in order, not the latest-ending one
    song_end_ms = notes[-1].end_time

    return DifficultyFactors(
        note_count=note_count,
        unique_keys=len({n.key for n in notes}),
        density=note_count / (song_end_ms / 1000),
        has_sharps=any("#" in n.key for n in notes),
        fast_tempo=bpm > FAST_TEMPO_BPM,
        short_notes=mean_duration < SHORT_NOTE_MS,
        mean_duration=mean_duration,
    )


def score_factors(factors: DifficultyFactors) -> int:
    score = 0

    if factors.note_count > 50:
        score += 2
    elif factors.note_count > 25:
        score += 1

    if factors.unique_keys > 8:
        score += 2
    elif factors.unique_keys > 5:
        score += 1

    if factors.density > 2:
        score += 2
    elif factors.density > 1:
        score += 1

    if factors.has_sharps:
        score += 1
    if factors.fast_tempo:
        score += 1
    if factors.short_notes:
        score += 1

    return score


def level_for_score(score: int) -> Difficulty:
    if score >= 5:
        return Difficulty.ADVANCED
    if score >= 2:
        return Difficulty.INTERMEDIATE
    return Difficulty.BEGINNER


def estimate(notes: Sequence[Note], bpm: float) -> DifficultyReport:
    """Score a simplified note list as beginner, intermediate or advanced."""
    factors = difficulty_factors(notes, bpm)
    score = score_factors(factors)
    level = level_for_score(score)
    description = (
        f"{level.value.capitalize()} (score {score}): "
        f"{factors.note_count} notes, {factors.unique_keys} distinct keys, "
        f"{factors.density:.1f} notes/s at {bpm:g} BPM."
    )
    return DifficultyReport(level=level, score=score, factors=factors, description=description)
