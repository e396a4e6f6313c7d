"""Tests for MIDI decoding, track selection and song assembly."""

import io

import mido
import pytest

from keystep.midi_decoder import RawNote, TrackData, decode, is_valid_midi, midi_info
from keystep.models import Difficulty, MidiMetadata
from keystep.song_loader import (
    EmptyFile,
    InvalidFormat,
    NoNotes,
    NoNotesInRange,
    import_batch,
    load_song,
    parse_midi_to_song,
    select_track,
)

_TPB = 480


def _make_test_midi(tracks, bpm=120, time_signature=None):
    """Build a type-1 MIDI file.

    ``tracks`` is a list of ``(name, [(pitch, start_ms, duration_ms), ...])``.
    Timings are converted at the file tempo; tempo and time signature live in
    a separate conductor track.
    """
    tempo = mido.bpm2tempo(bpm)
    mid = mido.MidiFile(type=1, ticks_per_beat=_TPB)
    conductor = mido.MidiTrack()
    conductor.append(mido.MetaMessage("set_tempo", tempo=tempo))
    if time_signature:
        conductor.append(mido.MetaMessage(
            "time_signature", numerator=time_signature[0], denominator=time_signature[1],
        ))
    mid.tracks.append(conductor)

    for name, notes in tracks:
        track = mido.MidiTrack()
        if name:
            track.append(mido.MetaMessage("track_name", name=name))
        events = []
        for pitch, start_ms, duration_ms in notes:
            on = round(mido.second2tick(start_ms / 1000, _TPB, tempo))
            off = round(mido.second2tick((start_ms + duration_ms) / 1000, _TPB, tempo))
            events.append((on, 1, "note_on", pitch))
            events.append((off, 0, "note_off", pitch))
        prev = 0
        for tick, _, kind, pitch in sorted(events):
            track.append(mido.Message(kind, note=pitch, velocity=90 if kind == "note_on" else 0, time=tick - prev))
            prev = tick
        mid.tracks.append(track)

    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


def _meta(name="song"):
    return MidiMetadata(id=name, title=name.title(), artist="Tester", category="imported")


MELODY = [(60, 0, 500), (62, 500, 500), (64, 1000, 500), (65, 1500, 500)]


def test_is_valid_midi():
    assert is_valid_midi(b"MThd\x00\x00\x00\x06")
    assert not is_valid_midi(b"RIFF....")
    assert not is_valid_midi(b"MT")
    assert not is_valid_midi(b"")


def test_decode_reads_tracks_and_header():
    buf = _make_test_midi([("Piano RH", MELODY)], bpm=100, time_signature=(3, 4))
    decoded = decode(buf)
    # Conductor track has no notes but is still listed
    assert len(decoded.tracks) == 2
    track = decoded.tracks[1]
    assert track.name == "Piano RH"
    assert [n.pitch for n in track.notes] == ["C4", "D4", "E4", "F4"]
    assert track.notes[1].time_seconds == pytest.approx(0.5, abs=1e-3)
    assert track.notes[1].duration_seconds == pytest.approx(0.5, abs=1e-3)
    assert decoded.tempos[0].bpm == pytest.approx(100)
    assert decoded.time_signatures[0].time_signature == (3, 4)


def test_decode_rejects_non_midi():
    with pytest.raises(InvalidFormat):
        decode(b"not a midi file")
    with pytest.raises(InvalidFormat):
        decode(b"MThd garbage")


def test_midi_info():
    buf = _make_test_midi([("Lead", MELODY), ("Bass", [(36, 0, 2000)])], bpm=90)
    info = midi_info(buf)
    assert info.tracks == 3
    assert info.notes == 5
    assert info.bpm == 90
    assert info.time_signature == "4/4"
    assert info.duration_ms == pytest.approx(2000, abs=2)


def _track(name, count):
    return TrackData(name=name, notes=[RawNote("C4", i * 0.5, 0.4) for i in range(count)])


def test_select_track_prefers_most_notes():
    tracks = [_track(None, 2), _track("Strings", 5), _track(None, 3)]
    assert select_track(tracks) is tracks[1]


def test_select_track_prefers_named_melody():
    tracks = [_track("Drums", 10), _track("Lead Vocal", 0), _track("Main Melody", 2), _track("Piano", 4)]
    assert select_track(tracks) is tracks[2]


def test_select_track_errors():
    with pytest.raises(EmptyFile):
        select_track([])
    with pytest.raises(NoNotes):
        select_track([_track("Melody", 0), _track(None, 0)])


def test_parse_midi_to_song():
    buf = _make_test_midi([("Accomp", [(48, 0, 2000)]), ("Melody", MELODY)], bpm=96, time_signature=(3, 4))
    song = parse_midi_to_song(buf, _meta("ode"))
    assert song.id == "ode"
    assert [n.key for n in song.notes] == ["C4", "D4", "E4", "F4"]
    assert [n.start_time for n in song.notes] == [0, 500, 1000, 1500]
    assert song.bpm == 96
    assert song.time_signature == "3/4"
    assert song.key_signature == "C major"
    assert song.duration == 2000
    assert song.difficulty == Difficulty.BEGINNER
    assert song.description == "Imported from MIDI with 4 notes."


def test_parse_midi_to_song_keeps_given_metadata():
    buf = _make_test_midi([("Melody", MELODY)])
    meta = MidiMetadata(
        id="x", title="X", artist="Y", category="c",
        key_signature="G major", difficulty=Difficulty.ADVANCED, description="Hand picked",
    )
    song = parse_midi_to_song(buf, meta)
    assert song.difficulty == Difficulty.ADVANCED
    assert song.key_signature == "G major"
    assert song.description == "Hand picked"


def test_parse_midi_to_song_reports_stage():
    buf = _make_test_midi([("Bass", [(36, 0, 500), (38, 500, 500)])])
    with pytest.raises(NoNotesInRange) as info:
        parse_midi_to_song(buf, _meta(), filename="bass.mid")
    assert info.value.stage == "simplify"
    assert info.value.filename == "bass.mid"
    assert "bass.mid" in str(info.value)


def test_load_song_from_path(tmp_path):
    path = tmp_path / "scale.mid"
    path.write_bytes(_make_test_midi([("Melody", MELODY)]))
    song = load_song(path)
    assert song.title == "scale"
    assert len(song.notes) == 4

    other = tmp_path / "scale.wav"
    other.write_bytes(b"RIFF")
    with pytest.raises(InvalidFormat):
        load_song(other)


@pytest.mark.parametrize("workers", [1, 3])
def test_batch_import_skips_bad_files(workers, caplog):
    files = [
        ("one.mid", _make_test_midi([("Melody", MELODY)])),
        ("two.mid", b"this is not midi"),
        ("three.mid", _make_test_midi([("Lead", MELODY[:2])])),
    ]
    result = import_batch(files, lambda name, i: _meta(name.split(".")[0]), max_workers=workers)
    assert [s.id for s in result.songs] == ["one", "three"]
    assert len(result.failures) == 1
    assert result.failures[0].filename == "two.mid"
    assert result.failures[0].stage == "validate"
    assert "Skipping two.mid" in caplog.text
