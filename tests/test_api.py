"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from src.errors import StorageFailure
from src.models import ChatResult
from src.server import app


@pytest.fixture
def mock_orchestrator():
    """Create a mock orchestrator and attach it to app state (mirrors the lifespan)."""
    orchestrator = MagicMock()
    orchestrator.process_message.side_effect = lambda session_id, text: ChatResult(
        response="Hi! I can help you find and book beauty services.",
        session_id=session_id,
        outcome="final",
    )

    app.state.orchestrator = orchestrator
    yield orchestrator
    app.state.orchestrator = None


@pytest.fixture
def client(mock_orchestrator):
    """FastAPI test client with the mock orchestrator wired up."""
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "beautibuk-agent"}


class TestChatEndpoint:
    def test_chat_returns_response(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session-1"},
        )
        assert response.status_code == 200
        assert response.json() == {
            "response": "Hi! I can help you find and book beauty services.",
            "session_id": "test-session-1",
        }

    def test_chat_passes_session_and_message(self, client, mock_orchestrator):
        client.post(
            "/api/chat",
            json={"message": "Find a barber", "session_id": "my-unique-session"},
        )
        mock_orchestrator.process_message.assert_called_once_with(
            "my-unique-session", "Find a barber",
        )

    def test_missing_session_id_gets_fresh_uuid(self, client, mock_orchestrator):
        response = client.post("/api/chat", json={"message": "Hello!"})
        assert response.status_code == 200

        session_id = response.json()["session_id"]
        assert uuid.UUID(session_id).version == 4
        assert mock_orchestrator.process_message.call_args[0][0] == session_id

    def test_each_new_conversation_gets_its_own_session(self, client):
        first = client.post("/api/chat", json={"message": "Hello!"}).json()["session_id"]
        second = client.post("/api/chat", json={"message": "Hello!"}).json()["session_id"]
        assert first != second

    def test_chat_validates_empty_message(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "", "session_id": "test-session"},
        )
        assert response.status_code == 422

    def test_degraded_reply_is_still_200(self, client, mock_orchestrator):
        mock_orchestrator.process_message.side_effect = None
        mock_orchestrator.process_message.return_value = ChatResult(
            response="I'm sorry, our assistant is temporarily unavailable.",
            session_id="test-session",
            outcome="degraded",
        )
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
        )
        assert response.status_code == 200
        assert "temporarily unavailable" in response.json()["response"]

    def test_storage_failure_returns_500_with_apology(self, client, mock_orchestrator):
        mock_orchestrator.process_message.side_effect = StorageFailure(
            "sqlite3.OperationalError: database is locked", pending=[MagicMock()],
        )
        response = client.post(
            "/api/chat",
            json={"message": "Book it", "session_id": "test-session"},
        )
        assert response.status_code == 500
        body = response.json()
        assert "database is locked" not in body["response"]
        assert "sorry" in body["response"].lower()
        assert body["session_id"] == "test-session"

    def test_storage_failure_returns_generated_session_id(self, client, mock_orchestrator):
        mock_orchestrator.process_message.side_effect = StorageFailure("disk I/O error")
        response = client.post("/api/chat", json={"message": "Book it"})
        assert response.status_code == 500

        session_id = response.json()["session_id"]
        assert uuid.UUID(session_id).version == 4
        assert mock_orchestrator.process_message.call_args[0][0] == session_id

    def test_unexpected_error_is_not_leaked(self, client, mock_orchestrator):
        mock_orchestrator.process_message.side_effect = RuntimeError("LLM exploded")
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
        )
        assert response.status_code == 500
        body = response.json()
        assert "LLM exploded" not in body["response"]
        assert "internal error" in body["response"].lower()
        assert body["session_id"] == "test-session"

    def test_response_includes_request_id_header(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
        )
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
            headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestOrchestratorNotReady:
    def test_returns_503_when_orchestrator_not_initialised(self):
        """Before the lifespan has built the orchestrator, chat answers 503."""
        with patch("src.server.create_orchestrator", return_value=MagicMock()):
            with TestClient(app) as tc:
                app.state.orchestrator = None
                response = tc.post("/api/chat", json={"message": "Hello!"})
                assert response.status_code == 503
                assert "starting up" in response.json()["detail"].lower()
                app.state.orchestrator = MagicMock()


class TestLifespan:
    def test_lifespan_builds_and_closes_orchestrator(self):
        orchestrator = MagicMock()
        with patch("src.server.create_orchestrator", return_value=orchestrator):
            with TestClient(app):
                assert app.state.orchestrator is orchestrator
        orchestrator.close.assert_called_once()
        app.state.orchestrator = None


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "BeautiBuk Agent"
        assert data["health"] == "/api/health"
