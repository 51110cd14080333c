"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    session_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Session identifier; a new one is generated when omitted",
    )


class ChatResponse(BaseModel):
    """Response from the agent."""

    response: str = Field(..., description="The agent's reply")
    session_id: str = Field(..., description="The session ID for this conversation")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "beautibuk-agent"
