"""SQLite storage for generation history."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class HistoryEntry:
    id: int | None
    chart_type: str
    user_input: str
    generated_code: str
    config_name: str | None = None
    model: str | None = None
    created_at: str | None = None


class HistoryStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # sessions finish on the event loop thread, API reads come from worker threads
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

    def init_db(self) -> None:
        """Create tables and indexes."""
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS history (
                id INTEGER PRIMARY KEY,
                chart_type TEXT NOT NULL DEFAULT 'auto',
                user_input TEXT NOT NULL,
                generated_code TEXT NOT NULL,
                config_name TEXT,
                model TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_history_created ON history(created_at);
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def insert_history(
        self,
        user_input: str,
        generated_code: str,
        chart_type: str = "auto",
        config_name: str | None = None,
        model: str | None = None,
    ) -> int:
        """Insert a finished generation. Returns its id."""
        now = datetime.now(timezone.utc).isoformat()
        cur = self._conn.execute(
            """INSERT INTO history
               (chart_type, user_input, generated_code, config_name, model, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (chart_type, user_input, generated_code, config_name, model, now),
        )
        self._conn.commit()
        return cur.lastrowid  # type: ignore[return-value]

    def list_history(self, limit: int = 50) -> list[dict]:
        """List recent entries, newest first (without the generated code)."""
        cur = self._conn.execute(
            """SELECT id, chart_type, user_input, config_name, model, created_at
               FROM history ORDER BY created_at DESC, id DESC LIMIT ?""",
            (limit,),
        )
        return [dict(row) for row in cur.fetchall()]

    def get_history(self, history_id: int) -> HistoryEntry | None:
        cur = self._conn.execute("SELECT * FROM history WHERE id = ?", (history_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return HistoryEntry(**dict(row))

    def delete_history(self, history_id: int) -> bool:
        """Delete one entry. Returns False if it did not exist."""
        cur = self._conn.execute("DELETE FROM history WHERE id = ?", (history_id,))
        self._conn.commit()
        return cur.rowcount > 0

    def clear_history(self) -> int:
        """Delete every entry. Returns the number removed."""
        cur = self._conn.execute("DELETE FROM history")
        self._conn.commit()
        return cur.rowcount

    def prune(self, keep: int) -> int:
        """Keep only the newest ``keep`` entries. Returns the number removed."""
        cur = self._conn.execute(
            """DELETE FROM history WHERE id NOT IN (
                   SELECT id FROM history ORDER BY created_at DESC, id DESC LIMIT ?
               )""",
            (keep,),
        )
        self._conn.commit()
        return cur.rowcount

    def count(self) -> int:
        cur = self._conn.execute("SELECT COUNT(*) FROM history")
        return cur.fetchone()[0]
