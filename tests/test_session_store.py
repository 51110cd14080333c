"""Tests for the SQLite session store and its read-through cache."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from src.errors import StorageFailure
from src.services.cache import LRUCache
from src.storage.sessions import CachedSessionStore, SQLiteSessionStore


def _turn(call_id: str = "c1") -> list:
    return [
        HumanMessage(content="Find me a salon for a haircut in Athens"),
        AIMessage(
            content="",
            tool_calls=[{"name": "search_businesses", "args": {"city": "Athens"}, "id": call_id}],
        ),
        ToolMessage(content='[{"name": "Salon A"}, {"name": "Salon B"}]', tool_call_id=call_id),
        AIMessage(content="I found 2 salons in Athens."),
    ]


class TestSQLiteSessionStore:
    def test_load_or_create_is_idempotent(self, db_path):
        store = SQLiteSessionStore(db_path)
        first = store.load_or_create("sess-1")
        second = store.load_or_create("sess-1")

        assert first.messages == [] == second.messages
        assert first.created_at == second.created_at

    def test_append_preserves_order_and_tool_links(self, db_path):
        store = SQLiteSessionStore(db_path)
        store.load_or_create("sess-1")
        store.append("sess-1", _turn("c1"))
        store.append("sess-1", [HumanMessage(content="Thanks!"), AIMessage(content="Anytime.")])

        messages = store.load_or_create("sess-1").messages
        assert [m.content for m in messages][-2:] == ["Thanks!", "Anytime."]
        assert messages[2].tool_call_id == "c1"
        assert messages[1].tool_calls[0]["args"] == {"city": "Athens"}

    def test_history_survives_reopen(self, db_path):
        SQLiteSessionStore(db_path).append("sess-1", _turn())
        reopened = SQLiteSessionStore(db_path).load_or_create("sess-1")
        assert len(reopened.messages) == 4

    def test_sessions_are_isolated(self, db_path):
        store = SQLiteSessionStore(db_path)
        store.append("sess-1", _turn())
        assert store.load_or_create("sess-2").messages == []

    def test_append_updates_timestamp(self, db_path):
        store = SQLiteSessionStore(db_path)
        created = store.load_or_create("sess-1")
        store.append("sess-1", [HumanMessage(content="hello")])
        updated = store.load_or_create("sess-1")
        assert updated.updated_at >= created.updated_at
        assert updated.created_at == created.created_at

    def test_failed_append_writes_nothing(self, db_path):
        store = SQLiteSessionStore(db_path)
        store.append("sess-1", [HumanMessage(content="first")])

        # Abort on the tool result, after two rows of the same turn went in
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                """
                CREATE TRIGGER reject_tool_result BEFORE INSERT ON session_messages
                WHEN NEW.payload LIKE '%"tool_call_id"%'
                BEGIN SELECT RAISE(ABORT, 'disk full'); END
                """
            )

        turn = _turn()
        with pytest.raises(StorageFailure) as exc_info:
            store.append("sess-1", turn)
        assert exc_info.value.pending == turn
        assert [m.content for m in store.load_or_create("sess-1").messages] == ["first"]

    def test_unreadable_database_raises_storage_failure(self, db_path):
        store = SQLiteSessionStore(db_path)
        store._conn.execute("DROP TABLE session_messages")
        with pytest.raises(StorageFailure):
            store.load_or_create("sess-1")


class TestCachedSessionStore:
    def test_second_load_is_served_from_cache(self, db_path):
        backing = MagicMock(wraps=SQLiteSessionStore(db_path))
        store = CachedSessionStore(backing, LRUCache())

        store.load_or_create("sess-1")
        store.load_or_create("sess-1")
        assert backing.load_or_create.call_count == 1

    def test_append_invalidates_cached_history(self, db_path):
        cache = LRUCache()
        store = CachedSessionStore(SQLiteSessionStore(db_path), cache)

        assert store.load_or_create("sess-1").messages == []
        store.append("sess-1", _turn())

        assert not cache.has("session:sess-1")
        assert len(store.load_or_create("sess-1").messages) == 4

    def test_failed_append_still_invalidates(self):
        backing = MagicMock()
        backing.append.side_effect = StorageFailure("disk full", pending=[])
        cache = LRUCache()
        cache.put("session:sess-1", {"messages": [], "created_at": "x", "updated_at": "x"})
        store = CachedSessionStore(backing, cache)

        with pytest.raises(StorageFailure):
            store.append("sess-1", _turn())
        assert not cache.has("session:sess-1")

    def test_cached_session_is_not_shared_state(self, db_path):
        store = CachedSessionStore(SQLiteSessionStore(db_path), LRUCache())
        session = store.load_or_create("sess-1")
        session.messages.append(HumanMessage(content="local only"))
        assert store.load_or_create("sess-1").messages == []
