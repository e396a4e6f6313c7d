"""Tests for SQLite progress persistence."""

from datetime import datetime

from keystep.models import SongProgress
from keystep.progress import ProgressTracker


def test_save_and_query_progress(tmp_path):
    tracker = ProgressTracker(db_path=tmp_path / "nested" / "progress.db")
    try:
        tracker.save_progress(SongProgress("ode", 10, 20, 50.0, 50.0, datetime(2024, 1, 1)))
        tracker.save_progress(SongProgress("ode", 20, 20, 100.0, 100.0, datetime(2024, 1, 2)))
        tracker.save_progress(SongProgress("scale", 3, 8, 37.5, 37.5, datetime(2024, 1, 3)))

        history = tracker.get_history("ode")
        assert [row["accuracy"] for row in history] == [100.0, 50.0]
        assert len(tracker.get_history()) == 3
        assert tracker.best_score("ode") == 100.0
        assert tracker.best_score("unknown") == 0.0
    finally:
        tracker.close()
