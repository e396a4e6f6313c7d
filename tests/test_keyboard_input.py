"""Tests for computer keyboard input mapping."""

import pygame

from keystep.keyboard_input import KeyboardInput


def _down(key):
    return pygame.event.Event(pygame.KEYDOWN, key=key)


def _up(key):
    return pygame.event.Event(pygame.KEYUP, key=key)


def test_maps_keys_relative_to_base_octave():
    kb = KeyboardInput(base_octave=4)
    assert kb.note_for(pygame.K_a) == "C4"
    assert kb.note_for(pygame.K_w) == "C#4"
    assert kb.note_for(pygame.K_k) == "C5"
    assert kb.note_for(pygame.K_SLASH) == "A6"
    assert kb.note_for(pygame.K_1) is None


def test_held_key_produces_one_press():
    kb = KeyboardInput()
    kb.feed_event(_down(pygame.K_a))
    kb.feed_event(_down(pygame.K_a))  # auto-repeat
    kb.feed_event(_up(pygame.K_a))

    press = kb.poll()
    release = kb.poll()
    assert (press.key, press.is_press) == ("C4", True)
    assert (release.key, release.is_press) == ("C4", False)
    assert kb.poll() is None


def test_release_matches_pressed_octave():
    kb = KeyboardInput(base_octave=4)
    kb.feed_event(_down(pygame.K_d))
    kb.octave_up()
    kb.feed_event(_up(pygame.K_d))
    assert [e.key for e in (kb.poll(), kb.poll())] == ["E4", "E4"]
    assert kb.note_for(pygame.K_d) == "E5"


def test_octave_bounds():
    kb = KeyboardInput(base_octave=0)
    kb.octave_down()
    assert kb.base_octave == 0
    for _ in range(10):
        kb.octave_up()
    assert kb.base_octave == 7


def test_drain_feeds_tutorial_session():
    from keystep.models import Difficulty, Note, Song
    from keystep.tutorial import TutorialSession

    notes = (Note("C4", 0, 500), Note("E4", 0, 500), Note("G4", 500, 500))
    song = Song(
        id="s", title="S", artist="A", difficulty=Difficulty.BEGINNER,
        category="test", bpm=120, duration=1000, notes=notes,
    )
    session = TutorialSession()
    session.start_tutorial(song)

    kb = KeyboardInput(base_octave=4)
    for event in (_down(pygame.K_a), _down(pygame.K_d), _up(pygame.K_a), _up(pygame.K_d)):
        kb.feed_event(event)
    released = []
    assert kb.drain(session.handle_key_press, released.append) == 2
    assert released == ["C4", "E4"]
    assert session.highlighted_keys == {"G4"}
