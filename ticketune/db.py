"""SQLite storage mapping users to their support ticket threads."""

from __future__ import annotations

import os
import sqlite3
import threading
from typing import Union

DB_FILE = "ticketune-db.sqlite3"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS support_tickets (
    user_id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
)
"""

PathLike = Union[str, "os.PathLike[str]"]


class TicketNotFound(LookupError):
    """Raised when no ticket row matches a lookup."""


class TicketDatabase:
    """Connection to the ticket database; safe to share between threads."""

    def __init__(self, path: PathLike = DB_FILE) -> None:
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            os.fspath(path), check_same_thread=False, isolation_level=None
        )
        try:
            self._conn.execute(_SCHEMA)
        except sqlite3.Error:
            self._conn.close()
            raise

    def _ping(self) -> None:
        with self._lock:
            self._conn.execute("SELECT 1").fetchone()

    def _lookup(self, query: str, key: int, what: str) -> int:
        with self._lock:
            row = self._conn.execute(query, (str(key),)).fetchone()
        if row is None:
            raise TicketNotFound(f"no ticket found for {what} {key}")
        return int(row[0])

    def set_user_thread(self, user_id: int, thread_id: int) -> None:
        """Store or replace the thread belonging to a user."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO support_tickets (user_id, thread_id) VALUES (?, ?)",
                (str(user_id), str(thread_id)),
            )

    def get_user_thread(self, user_id: int) -> int:
        """Return the thread ID for a user, raising TicketNotFound if none."""
        return self._lookup(
            "SELECT thread_id FROM support_tickets WHERE user_id = ?", user_id, "user"
        )

    def get_thread_user(self, thread_id: int) -> int:
        """Return the user ID for a thread, raising TicketNotFound if none."""
        return self._lookup(
            "SELECT user_id FROM support_tickets WHERE thread_id = ?", thread_id, "thread"
        )

    def delete_user_thread(self, user_id: Union[int, str]) -> None:
        """Remove the record of a user's thread, if any."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM support_tickets WHERE user_id = ?", (str(user_id),)
            )

    def cleanup_old_threads(self) -> None:
        """Delete records created more than one month ago."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM support_tickets WHERE created_at < datetime('now', '-1 month')"
            )

    def close_thread(self, thread_id: int) -> int:
        """Delete the record of a thread and return the user it belonged to."""
        key = str(thread_id)
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT user_id FROM support_tickets WHERE thread_id = ? "
                    "ORDER BY rowid LIMIT 1",
                    (key,),
                ).fetchone()
                if row is None:
                    raise TicketNotFound(f"no ticket found for thread {thread_id}")
                self._conn.execute(
                    "DELETE FROM support_tickets WHERE thread_id = ?", (key,)
                )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "TicketDatabase":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def open_database(path: PathLike = DB_FILE) -> TicketDatabase:
    """Open (or create) the database and check that it answers."""
    database = TicketDatabase(path)
    try:
        database._ping()
    except sqlite3.Error:
        database.close()
        raise
    return database