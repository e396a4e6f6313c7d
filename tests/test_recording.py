"""Tests for performance recording and MIDI export."""

import io
import logging

import mido

from keystep.midi_decoder import decode
from keystep.models import Note, Recording
from keystep.recording import Recorder, export_info, export_midi, format_duration, save_midi


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_recorder_captures_notes():
    clock = _Clock()
    rec = Recorder(clock=clock)
    rec.start()
    rec.note_on("C4")
    clock.now += 0.5
    rec.note_off("C4")
    rec.note_on("E4")
    clock.now += 0.03
    rec.note_off("E4")  # too short, dropped
    rec.note_on("G4")
    clock.now += 0.25
    recording = rec.stop(title="Take 1")

    assert not rec.is_recording
    assert [(n.key, n.start_time, n.duration) for n in recording.notes] == [
        ("C4", 0, 500),
        ("G4", 530, 250),
    ]
    assert recording.duration == 780
    assert recording.title == "Take 1"


def test_recorder_pause_closes_held_notes():
    clock = _Clock()
    rec = Recorder(clock=clock)
    rec.start()
    rec.note_on("A4")
    clock.now += 0.2
    rec.pause()
    rec.note_on("B4")  # ignored while paused
    clock.now += 1.0
    rec.resume()
    recording = rec.stop()
    assert [n.key for n in recording.notes] == ["A4"]
    assert recording.notes[0].duration == 200


def _recording(notes, title="My Song!"):
    notes = tuple(Note(key=k, start_time=s, duration=d) for k, s, d in notes)
    return Recording(
        id="r1", title=title, artist="Me", notes=notes, bpm=120,
        duration=max((n.end_time for n in notes), default=0), description="practice",
    )


def test_export_midi_decodes_back():
    data = export_midi(_recording([("C4", 0, 500), ("E4", 0, 500), ("G4", 500, 1000)]))
    decoded = decode(data)
    track = decoded.tracks[0]
    assert track.name == "My Song!"
    assert [n.pitch for n in track.notes] == ["C4", "E4", "G4"]
    assert track.notes[2].time_seconds == 0.5
    assert decoded.time_signatures[0].time_signature == (4, 4)

    mid = mido.MidiFile(file=io.BytesIO(data))
    texts = [m.text for m in mid.tracks[0] if m.type == "text"]
    assert texts == ["Artist: Me", "Description: practice"]


def test_export_skips_unplayable_notes(caplog):
    with caplog.at_level(logging.WARNING, logger="keystep.recording"):
        data = export_midi(_recording([("C4", 0, 500), ("C12", 500, 500), ("D4", 1000, 500)]))
    assert [n.pitch for n in decode(data).tracks[0].notes] == ["C4", "D4"]
    assert "C12" in caplog.text


def test_save_midi_sanitizes_filename(tmp_path):
    path = save_midi(_recording([("C4", 0, 500)]), tmp_path)
    assert path.name == "My_Song_.mid"
    assert path.read_bytes()[:4] == b"MThd"


def test_export_info():
    info = export_info(_recording([("C4", 0, 500), ("D4", 64_000, 500)]))
    assert info.filename == "My_Song_.mid"
    assert info.notes == 2
    assert info.duration == "1:04"
    assert info.filesize == "1 KB"
    assert format_duration(59_999) == "0:59"
