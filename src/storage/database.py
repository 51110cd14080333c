"""SQLite connection helper and key/value meta table shared by the stores."""

from __future__ import annotations

import os
import sqlite3

from src.errors import StorageFailure


def connect_db(path: str) -> sqlite3.Connection:
    """Open *path* (creating its directory) for use from worker threads.

    Stores hold one connection each and serialise access with their own
    lock, hence ``check_same_thread=False``.
    """
    if path != ":memory:":
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def ensure_meta_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def get_meta(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    return None if row is None else row["value"]


def set_meta_if_absent(conn: sqlite3.Connection, key: str, value: str) -> str:
    """Store *value* under *key* unless already set.  Returns the stored value."""
    conn.execute(
        "INSERT INTO meta (key, value) VALUES (?, ?) ON CONFLICT(key) DO NOTHING",
        (key, value),
    )
    stored = get_meta(conn, key)
    if stored is None:
        raise StorageFailure(f"Meta key {key!r} missing right after it was written")
    return stored
