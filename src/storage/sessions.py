"""Session store: durable per-session message history.

``SQLiteSessionStore`` keeps one row per session and one row per message
(``position`` is conversational order).  ``append`` writes all messages of
one turn inside a single transaction, so a crash mid-turn never leaves a
session with a dangling tool call.

``CachedSessionStore`` puts the byte-bounded LRU cache in front of any
store.  Every append invalidates the session's entry; the durable store
stays the source of truth.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from langchain_core.messages import BaseMessage

from src.config import DATABASE_PATH
from src.errors import StorageFailure
from src.models import Session, messages_from_payload, messages_to_payload
from src.services.cache import LRUCache
from src.storage.database import connect_db, ensure_meta_table, set_meta_if_absent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


class SessionStore(Protocol):
    """Read/write contract the orchestrator relies on."""

    def load_or_create(self, session_id: str) -> Session:
        """Return the session, creating an empty one on first sight."""
        ...

    def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        """Durably append *messages* (all or none)."""
        ...


class SQLiteSessionStore:
    """``SessionStore`` backed by SQLite."""

    def __init__(self, path: str | None = None) -> None:
        self._conn = connect_db(path or DATABASE_PATH)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            ensure_meta_table(self._conn)
            set_meta_if_absent(self._conn, "sessions_schema_version", SCHEMA_VERSION)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS session_messages (
                    session_id TEXT NOT NULL REFERENCES sessions(session_id),
                    position INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (session_id, position)
                )
                """
            )

    def load_or_create(self, session_id: str) -> Session:
        now = datetime.now(UTC).isoformat()
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO sessions (session_id, created_at, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(session_id) DO NOTHING
                    """,
                    (session_id, now, now),
                )
                row = self._conn.execute(
                    "SELECT created_at, updated_at FROM sessions WHERE session_id = ?",
                    (session_id,),
                ).fetchone()
                payloads = [
                    json.loads(r["payload"])
                    for r in self._conn.execute(
                        """
                        SELECT payload FROM session_messages
                        WHERE session_id = ? ORDER BY position
                        """,
                        (session_id,),
                    )
                ]
        except sqlite3.Error as exc:
            logger.error("Could not load session %s: %s", session_id, exc)
            raise StorageFailure(f"Could not load session {session_id}: {exc}") from exc

        return Session(
            session_id=session_id,
            messages=messages_from_payload(payloads),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        if not messages:
            return
        now = datetime.now(UTC).isoformat()
        rows = [json.dumps(payload) for payload in messages_to_payload(messages)]
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO sessions (session_id, created_at, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(session_id) DO UPDATE SET updated_at = excluded.updated_at
                    """,
                    (session_id, now, now),
                )
                start = self._conn.execute(
                    """
                    SELECT COALESCE(MAX(position), -1) + 1 AS next_position
                    FROM session_messages WHERE session_id = ?
                    """,
                    (session_id,),
                ).fetchone()["next_position"]
                self._conn.executemany(
                    """
                    INSERT INTO session_messages (session_id, position, payload)
                    VALUES (?, ?, ?)
                    """,
                    [(session_id, start + offset, row) for offset, row in enumerate(rows)],
                )
        except sqlite3.Error as exc:
            logger.error("Could not append to session %s: %s", session_id, exc)
            raise StorageFailure(
                f"Could not append to session {session_id}: {exc}",
                pending=list(messages),
            ) from exc
        logger.debug("Session %s: appended %d messages", session_id, len(rows))

    def close(self) -> None:
        self._conn.close()


class CachedSessionStore:
    """Read-through LRU cache in front of a ``SessionStore``."""

    KEY_PREFIX = "session:"

    def __init__(self, store: SessionStore, cache: LRUCache | None = None) -> None:
        self._store = store
        self._cache = cache or LRUCache()

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def load_or_create(self, session_id: str) -> Session:
        cached: dict[str, Any] | None = self._cache.get(self._key(session_id))
        if cached is not None:
            return Session(
                session_id=session_id,
                messages=messages_from_payload(cached["messages"]),
                created_at=datetime.fromisoformat(cached["created_at"]),
                updated_at=datetime.fromisoformat(cached["updated_at"]),
            )

        session = self._store.load_or_create(session_id)
        self._cache.put(
            self._key(session_id),
            {
                "messages": messages_to_payload(session.messages),
                "created_at": session.created_at.isoformat(),
                "updated_at": session.updated_at.isoformat(),
            },
        )
        return session

    def append(self, session_id: str, messages: Sequence[BaseMessage]) -> None:
        try:
            self._store.append(session_id, messages)
        finally:
            # Invalidate even on failure: the durable state is unknown
            self._cache.invalidate(self._key(session_id))
