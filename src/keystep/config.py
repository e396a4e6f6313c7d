"""Global constants and default settings."""

# Importer octave window and timing (milliseconds)
DEFAULT_MIN_OCTAVE = 4
DEFAULT_MAX_OCTAVE = 6
DEFAULT_MIN_NOTE_DURATION_MS = 100
DEFAULT_QUANTIZE_THRESHOLD_MS = 50
DEFAULT_MAX_NOTES_PER_SECOND = 4

# Notes starting this close together are treated as simultaneous
IMPORT_CHORD_TOLERANCE_MS = 50
TUTORIAL_CHORD_TOLERANCE_MS = 100

# A partially pressed chord is force-advanced after this long
CHORD_COMPLETION_TIMEOUT_MS = 2000

# Track names that mark the melody line (matched case-insensitively)
MELODY_TRACK_KEYWORDS = ("melody", "lead", "vocal", "main", "piano")

# Song defaults when the MIDI header is silent
DEFAULT_BPM = 120
DEFAULT_TIME_SIGNATURE = "4/4"
DEFAULT_KEY_SIGNATURE = "C major"

# Tutorial playback speed multiplier bounds
MIN_PLAYBACK_SPEED = 0.25
MAX_PLAYBACK_SPEED = 2.0

# Recorded notes shorter than this are dropped
MIN_RECORDED_NOTE_MS = 50
