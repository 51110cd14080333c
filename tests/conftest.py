"""Shared test fixtures for the BeautiBuk agent test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def mock_rpc_response():
    """Factory fixture for JSON-RPC responses from the tool server.

    The returned callable is meant for ``side_effect`` on ``httpx.Client.post``:
    it echoes the request id so correlation checks pass.
    """

    def _make(result: dict | None = None, *, error: dict | None = None, status_code: int = 200):
        def _post(url, json=None, **kwargs):
            body = {"jsonrpc": "2.0", "id": json["id"]}
            if error is not None:
                body["error"] = error
            else:
                body["result"] = result if result is not None else {}
            mock = MagicMock()
            mock.status_code = status_code
            mock.json.return_value = body
            mock.text = str(body)
            return mock

        return _post

    return _make


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh SQLite database file."""
    return str(tmp_path / "agent.db")


@pytest.fixture
def vector_path(tmp_path):
    """Directory for a fresh LanceDB database."""
    return str(tmp_path / "vectors")
