"""SQLite connection layer for the coordinator state store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

# Seconds a connection waits on a locked database before raising.
_BUSY_TIMEOUT = 30.0


class Database:
    """Coordinator SQLite database.

    Each ``connect()`` returns a fresh connection, so concurrent callers
    (threads or processes) never share one; WAL mode lets readers proceed
    while a claim is being written.
    """

    def __init__(self, db_path: Path | str, timeout: float = _BUSY_TIMEOUT) -> None:
        """Remember the path; nothing is opened until connect().

        Args:
            db_path: Coordinator database file; parent directories are created on connect.
            timeout: Seconds to wait on a write lock held by another worker.
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

    def connect(self) -> sqlite3.Connection:
        """Return a new connection (Row factory, foreign keys on, WAL journal)."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn
