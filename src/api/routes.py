"""FastAPI route definitions for the BeautiBuk agent API."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from src.agent import Orchestrator
from src.api.schemas import ChatRequest, ChatResponse, HealthResponse
from src.errors import StorageFailure

logger = logging.getLogger(__name__)

router = APIRouter()

STORAGE_ERROR_DETAIL = (
    "Sorry, we couldn't save your conversation. Please try sending your message again."
)
INTERNAL_ERROR_DETAIL = "An internal error occurred. Please try again."


def _get_orchestrator(request: Request) -> Orchestrator:
    """Retrieve the orchestrator created during the FastAPI lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return orchestrator


def _error_response(message: str, session_id: str) -> JSONResponse:
    """500 carrying an apology and the session id, so the client can retry."""
    body = ChatResponse(response=message, session_id=session_id)
    return JSONResponse(status_code=500, content=body.model_dump())


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the booking agent and get a response.

    When ``session_id`` is omitted a fresh one is generated and returned,
    so the client can continue the conversation.

    ``process_message`` blocks on the completion provider, the tool server
    and SQLite, so it runs on the default thread pool via
    ``asyncio.to_thread``.
    """
    orchestrator = _get_orchestrator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    session_id = request.session_id or str(uuid.uuid4())

    try:
        result = await asyncio.to_thread(
            orchestrator.process_message, session_id, request.message,
        )
    except StorageFailure as e:
        logger.error(
            "[%s] Session %s not persisted (%d pending message(s)): %s",
            request_id, session_id, len(e.pending), e,
        )
        return _error_response(STORAGE_ERROR_DETAIL, session_id)
    except Exception:
        # Full traceback server-side only
        logger.exception("[%s] Error processing chat request", request_id)
        return _error_response(INTERNAL_ERROR_DETAIL, session_id)

    return ChatResponse(response=result.response, session_id=result.session_id)
