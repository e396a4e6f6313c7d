"""Tutorial progress tracking with SQLite persistence."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from keystep.models import SongProgress

DEFAULT_DB_PATH = Path.home() / ".keystep" / "progress.db"


class ProgressTracker:
    def __init__(self, db_path: Path = DEFAULT_DB_PATH) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self._init_db()

    def _init_db(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS tutorial_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                song_id TEXT NOT NULL,
                completed_notes INTEGER,
                total_notes INTEGER,
                accuracy REAL,
                best_score REAL,
                played_at TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def save_progress(self, progress: SongProgress) -> None:
        self.conn.execute(
            """INSERT INTO tutorial_sessions
               (song_id, completed_notes, total_notes, accuracy, best_score, played_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                progress.song_id,
                progress.completed_notes,
                progress.total_notes,
                progress.accuracy,
                progress.best_score,
                progress.last_played_at.isoformat(),
            ),
        )
        self.conn.commit()

    def get_history(self, song_id: str | None = None, limit: int = 50) -> list[dict]:
        if song_id:
            cur = self.conn.execute(
                "SELECT * FROM tutorial_sessions WHERE song_id = ? ORDER BY played_at DESC, id DESC LIMIT ?",
                (song_id, limit),
            )
        else:
            cur = self.conn.execute(
                "SELECT * FROM tutorial_sessions ORDER BY played_at DESC, id DESC LIMIT ?", (limit,)
            )
        cols = [d[0] for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]

    def best_score(self, song_id: str) -> float:
        row = self.conn.execute(
            "SELECT MAX(best_score) FROM tutorial_sessions WHERE song_id = ?", (song_id,)
        ).fetchone()
        return row[0] if row and row[0] is not None else 0.0

    def close(self) -> None:
        self.conn.close()
