from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from .models import BookSummary, SessionSnapshot


class SessionStore:
    """SQLite-backed storage for packing session snapshots."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._initialize()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS book_sessions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    snapshot TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                """
            )

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def save(self, book_id: str, snapshot: SessionSnapshot) -> None:
        payload = snapshot.model_dump_json()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO book_sessions (id, title, snapshot)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    snapshot = excluded.snapshot,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (book_id, snapshot.title, payload),
            )

    def load(self, book_id: str) -> Optional[SessionSnapshot]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT snapshot FROM book_sessions WHERE id = ?",
                (book_id,),
            ).fetchone()
        if row is None:
            return None
        return SessionSnapshot.model_validate_json(row["snapshot"])

    def delete(self, book_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM book_sessions WHERE id = ?", (book_id,))
            return cursor.rowcount > 0

    def list_books(self) -> List[BookSummary]:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, title, updated_at
                FROM book_sessions
                ORDER BY created_at ASC, rowid ASC
                """
            )
            return [
                BookSummary(book_id=row["id"], title=row["title"], updated_at=row["updated_at"])
                for row in cursor.fetchall()
            ]
