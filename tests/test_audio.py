"""Tests for the FluidSynth audio engine."""

from unittest.mock import patch

import pytest

pytest.importorskip("fluidsynth")

from keystep.audio import AudioEngine  # noqa: E402
from keystep.playback import NotePlayer  # noqa: E402


def test_play_note_with_octave_sends_midi_pitch():
    with patch("keystep.audio.fluidsynth.Synth") as synth_cls:
        engine = AudioEngine()
        engine.play_note_with_octave("C#", 4)
        synth = synth_cls.return_value
        synth.noteon.assert_called_once_with(0, 61, 80)
        assert isinstance(engine, NotePlayer)


def test_pending_notes_are_released():
    with patch("keystep.audio.fluidsynth.Synth") as synth_cls, patch("keystep.audio.time.time") as now:
        now.return_value = 10.0
        engine = AudioEngine(note_seconds=0.5)
        engine.play_note_with_octave("A", 4)
        now.return_value = 10.2
        engine.flush_pending_offs()
        synth_cls.return_value.noteoff.assert_not_called()
        now.return_value = 10.6
        engine.flush_pending_offs()
        synth_cls.return_value.noteoff.assert_called_once_with(0, 69)


def test_keyboard_drain_sounds_held_keys():
    import pygame

    from keystep.keyboard_input import KeyboardInput

    with patch("keystep.audio.fluidsynth.Synth") as synth_cls:
        engine = AudioEngine()
        kb = KeyboardInput(base_octave=4)
        kb.feed_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_a))
        kb.feed_event(pygame.event.Event(pygame.KEYUP, key=pygame.K_a))
        assert kb.drain(engine.note_on, engine.note_off) == 1
        synth = synth_cls.return_value
        synth.noteon.assert_called_once_with(0, 60, 80)
        synth.noteoff.assert_called_once_with(0, 60)
