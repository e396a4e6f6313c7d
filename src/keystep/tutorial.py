"""Tutorial matcher — steps through a song chord by chord as keys are pressed.

The matcher is a pure state machine: every transition takes the current
``TutorialState`` and returns the next state plus a list of effects (start or
cancel the completion timer, publish highlight/progress events).
``TutorialSession`` owns one state, applies the effects and serializes all
mutations, so a late timer and a key press can never both advance the same
chord.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, auto
from functools import partial
from typing import Any, Callable, Protocol, Union

from keystep.config import CHORD_COMPLETION_TIMEOUT_MS, TUTORIAL_CHORD_TOLERANCE_MS
from keystep.models import NoteGroup, Song, SongProgress, chord_at
from keystep.playback import NotePlayer, PreviewPlayback, clamp_speed

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = auto()  # no song loaded
    READY = auto()  # current chord highlighted, nothing pressed
    AWAITING_CHORD = auto()  # some but not all keys of the chord pressed
    COMPLETED = auto()


@dataclass(frozen=True)
class TutorialState:
    song: Song | None = None
    phase: Phase = Phase.IDLE
    current_note_index: int = 0  # flat index of the current chord's first note
    pressed: frozenset[str] = frozenset()
    completed_notes: int = 0
    accuracy: float = 0.0  # percentage, one decimal
    best_score: float = 0.0
    is_playing: bool = False
    is_paused: bool = False
    playback_speed: float = 1.0
    epoch: int = 0  # changes whenever the current chord changes
    last_played_at: datetime = field(default_factory=datetime.now)

    @property
    def total_notes(self) -> int:
        return len(self.song.notes) if self.song else 0

    @property
    def current_chord(self) -> NoteGroup | None:
        if self.song is None or self.phase in (Phase.IDLE, Phase.COMPLETED):
            return None
        return chord_at(self.song.notes, self.current_note_index, TUTORIAL_CHORD_TOLERANCE_MS)

    @property
    def highlighted_keys(self) -> frozenset[str]:
        chord = self.current_chord
        return chord.keys if chord else frozenset()

    @property
    def is_completed(self) -> bool:
        return self.phase is Phase.COMPLETED

    def progress(self) -> SongProgress | None:
        if self.song is None:
            return None
        return SongProgress(
            song_id=self.song.id,
            completed_notes=self.completed_notes,
            total_notes=self.total_notes,
            accuracy=self.accuracy,
            best_score=self.best_score,
            last_played_at=self.last_played_at,
        )


# Effects


@dataclass(frozen=True)
class StartTimer:
    token: int
    delay_ms: int


@dataclass(frozen=True)
class CancelTimer:
    pass


@dataclass(frozen=True)
class HighlightChanged:
    keys: frozenset[str]


@dataclass(frozen=True)
class ProgressUpdated:
    progress: SongProgress


@dataclass(frozen=True)
class TutorialCompleted:
    progress: SongProgress


TutorialEvent = Union[HighlightChanged, ProgressUpdated, TutorialCompleted]
Effect = Union[StartTimer, CancelTimer, TutorialEvent]
Transition = tuple[TutorialState, list[Effect]]


# Transitions


def start_tutorial(song: Song, previous: TutorialState | None = None) -> Transition:
    """Load a song and highlight its first chord."""
    epoch = previous.epoch + 1 if previous else 0
    state = TutorialState(song=song, phase=Phase.READY, epoch=epoch)
    return state, [CancelTimer(), HighlightChanged(state.highlighted_keys), ProgressUpdated(state.progress())]


def press_key(state: TutorialState, key: str) -> Transition:
    """Match one key-down against the current chord.

    Wrong keys and keys already pressed for this chord are ignored; there is
    no penalty for a miss.
    """
    chord = state.current_chord
    if chord is None:
        logger.debug("Ignoring key %s: no chord pending", key)
        return state, []
    if key not in chord.keys:
        logger.debug("Ignoring key %s, expected %s", key, sorted(chord.keys))
        return state, []
    if key in state.pressed:
        return state, []

    pressed = state.pressed | {key}
    if pressed == chord.keys:
        return _advance(state, chord)

    effects: list[Effect] = []
    if not state.pressed:
        effects.append(StartTimer(token=state.epoch, delay_ms=CHORD_COMPLETION_TIMEOUT_MS))
    return replace(state, pressed=pressed, phase=Phase.AWAITING_CHORD), effects


def timer_expired(state: TutorialState, token: int) -> Transition:
    """Force-advance a partially pressed chord.

    The whole chord is credited, not just the pressed keys, so chords that
    could not be completed in time are forgiven. A token from an earlier chord
    is ignored.
    """
    if token != state.epoch or state.phase is not Phase.AWAITING_CHORD:
        return state, []
    chord = state.current_chord
    if chord is None:
        return state, []
    logger.debug(
        "Chord %s timed out with %s pressed, advancing",
        sorted(chord.keys), sorted(state.pressed),
    )
    return _advance(state, chord)


def _advance(state: TutorialState, chord: NoteGroup) -> Transition:
    completed = state.completed_notes + chord.size
    accuracy = round(completed / state.total_notes * 100.0, 1)
    next_index = state.current_note_index + chord.size
    done = next_index >= state.total_notes

    state = replace(
        state,
        phase=Phase.COMPLETED if done else Phase.READY,
        current_note_index=next_index,
        pressed=frozenset(),
        completed_notes=completed,
        accuracy=accuracy,
        best_score=max(state.best_score, accuracy),
        epoch=state.epoch + 1,
        last_played_at=datetime.now(),
    )
    progress = state.progress()
    effects: list[Effect] = [CancelTimer(), ProgressUpdated(progress), HighlightChanged(state.highlighted_keys)]
    if done:
        logger.info("Tutorial for %s completed (%.1f%%)", state.song.title, accuracy)
        effects.append(TutorialCompleted(progress))
    return state, effects


def reset(state: TutorialState) -> Transition:
    """Unload the song and return to idle."""
    return TutorialState(epoch=state.epoch + 1), [CancelTimer(), HighlightChanged(frozenset())]


def play(state: TutorialState) -> Transition:
    if state.song is None:
        return state, []
    return replace(state, is_playing=True, is_paused=False), []


def pause(state: TutorialState) -> Transition:
    if state.song is None:
        return state, []
    return replace(state, is_playing=False, is_paused=True), []


def stop(state: TutorialState) -> Transition:
    return replace(state, is_playing=False, is_paused=False), []


def set_playback_speed(state: TutorialState, speed: float) -> Transition:
    return replace(state, playback_speed=clamp_speed(speed)), []


# Timers


class TimerScheduler(Protocol):
    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> Any: ...
    def cancel(self, handle: Any) -> None: ...
    def advance(self, dt: float) -> None: ...


class FrameTimerScheduler:
    """Timers driven by the host's frame loop via ``advance(dt)``."""

    def __init__(self) -> None:
        self._now = 0.0  # ms
        self._ids = itertools.count()
        self._timers: dict[int, tuple[float, Callable[[], None]]] = {}

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> int:
        handle = next(self._ids)
        self._timers[handle] = (self._now + delay_ms, callback)
        return handle

    def cancel(self, handle: int) -> None:
        self._timers.pop(handle, None)

    def advance(self, dt: float) -> None:
        """Advance the clock by dt seconds and fire every timer that came due."""
        self._now += dt * 1000.0
        due = sorted(
            (deadline, handle) for handle, (deadline, _) in self._timers.items()
            if deadline <= self._now
        )
        for _, handle in due:
            # An earlier callback may have cancelled this one
            entry = self._timers.pop(handle, None)
            if entry is not None:
                entry[1]()

    @property
    def pending(self) -> int:
        return len(self._timers)


class ThreadTimerScheduler:
    """Timers on background threads, for hosts without a frame loop."""

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return timer

    def cancel(self, handle: threading.Timer) -> None:
        handle.cancel()

    def advance(self, dt: float) -> None:
        pass


# Session


class TutorialSession:
    """Single-writer owner of a tutorial's state, timer and subscribers."""

    def __init__(
        self,
        scheduler: TimerScheduler | None = None,
        player: NotePlayer | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._state = TutorialState()
        self._scheduler = scheduler or FrameTimerScheduler()
        self._timer: Any = None
        self._player = player
        self._preview: PreviewPlayback | None = None
        self._listeners: list[Callable[[TutorialEvent], None]] = []
        self._outbox: list[TutorialEvent] = []
        self._publishing = False

    # Observers

    def subscribe(self, listener: Callable[[TutorialEvent], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[TutorialEvent], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # Queries

    @property
    def state(self) -> TutorialState:
        return self._state

    @property
    def progress(self) -> SongProgress | None:
        return self._state.progress()

    @property
    def highlighted_keys(self) -> frozenset[str]:
        return self._state.highlighted_keys

    @property
    def is_completed(self) -> bool:
        return self._state.is_completed

    # Commands

    def start_tutorial(self, song: Song) -> None:
        with self._lock:
            self._dispatch(start_tutorial(song, self._state))
            self._preview = PreviewPlayback(song, self._player) if self._player else None

    def handle_key_press(self, key: str) -> None:
        with self._lock:
            self._dispatch(press_key(self._state, key))

    def reset(self) -> None:
        with self._lock:
            self._dispatch(reset(self._state))
            self._preview = None

    def play(self) -> None:
        with self._lock:
            self._dispatch(play(self._state))
            if self._preview:
                self._preview.set_speed(self._state.playback_speed)
                self._preview.paused = False

    def pause(self) -> None:
        with self._lock:
            self._dispatch(pause(self._state))
            if self._preview:
                self._preview.paused = True

    def stop(self) -> None:
        with self._lock:
            self._dispatch(stop(self._state))
            if self._preview:
                self._preview.rewind()

    def set_playback_speed(self, speed: float) -> None:
        with self._lock:
            self._dispatch(set_playback_speed(self._state, speed))
            if self._preview:
                self._preview.set_speed(self._state.playback_speed)

    def update(self, dt: float) -> None:
        """Per-frame tick: fire due timers and advance the soundtrack preview."""
        with self._lock:
            self._scheduler.advance(dt)
            if self._preview and self._state.is_playing:
                self._preview.update(dt)
                if self._preview.finished:
                    self.stop()

    # Internals

    def _on_timer(self, token: int) -> None:
        with self._lock:
            self._dispatch(timer_expired(self._state, token))

    def _dispatch(self, transition: Transition) -> None:
        self._state, effects = transition
        for effect in effects:
            if isinstance(effect, CancelTimer):
                self._cancel_timer()
            elif isinstance(effect, StartTimer):
                self._cancel_timer()
                self._timer = self._scheduler.schedule(effect.delay_ms, partial(self._on_timer, effect.token))
            else:
                self._outbox.append(effect)
        self._publish()

    def _publish(self) -> None:
        # Events raised by a listener calling back in are queued behind the current ones
        if self._publishing:
            return
        self._publishing = True
        try:
            while self._outbox:
                event = self._outbox.pop(0)
                for listener in list(self._listeners):
                    listener(event)
        finally:
            self._publishing = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._scheduler.cancel(self._timer)
            self._timer = None
