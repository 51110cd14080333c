"""Domain models shared by the orchestrator, the stores and the adapters.

Conversation messages are plain LangChain messages:

  - user         → ``HumanMessage``
  - assistant    → ``AIMessage`` (``tool_calls`` set when tools are requested)
  - system       → ``SystemMessage`` (built per request, never persisted)
  - tool-result  → ``ToolMessage`` (``tool_call_id`` links back to the request)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    ToolMessage,
    messages_from_dict,
    messages_to_dict,
)
from pydantic import BaseModel, ConfigDict, Field

from src.errors import ProtocolViolation


def _utc_now() -> datetime:
    return datetime.now(UTC)


# ── Tools ────────────────────────────────────────────────────────────


class ToolDescriptor(BaseModel):
    """A remote tool as advertised by the tool server (read-only)."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    @classmethod
    def from_mcp(cls, data: dict[str, Any]) -> ToolDescriptor:
        """Build a descriptor from an MCP ``tools/list`` entry."""
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            parameter_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
        )

    def to_anthropic(self) -> dict[str, Any]:
        """Anthropic tool definition accepted by ``ChatAnthropic.bind_tools``."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameter_schema,
        }


class ToolInvocationRequest(BaseModel):
    """One tool call requested by the model within a completion."""

    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    def to_tool_call(self) -> dict[str, Any]:
        return {"name": self.name, "args": self.arguments, "id": self.call_id, "type": "tool_call"}


class Completion(BaseModel):
    """Vendor-neutral outcome of one completion request.

    Either ``content`` is a final answer, or ``tool_calls`` lists the tools
    the model wants executed before it answers.
    """

    content: str = ""
    tool_calls: list[ToolInvocationRequest] = Field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> AIMessage:
        return AIMessage(
            content=self.content,
            tool_calls=[call.to_tool_call() for call in self.tool_calls],
        )


# ── Conversation state ──────────────────────────────────────────────


class Session(BaseModel):
    """Durable, ordered message history for one conversation."""

    session_id: str
    messages: list[BaseMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class EmbeddingRecord(BaseModel):
    """A stored user message and its embedding vector (never mutated)."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    text: str
    vector: list[float]
    created_at: datetime = Field(default_factory=_utc_now)
    id: str | None = None


class RetrievedSnippet(BaseModel):
    """A prior message judged relevant to the current query."""

    text: str
    similarity: float
    owner_id: str


class ChatResult(BaseModel):
    """Final outcome of one orchestration turn."""

    response: str
    session_id: str
    outcome: str
    rounds: int = 0


# ── Invariants & serialisation ──────────────────────────────────────


def validate_tool_results(messages: Sequence[BaseMessage]) -> None:
    """Check the tool-call / tool-result pairing of a conversation.

    The tool results following an assistant message must answer that
    message's tool calls one-to-one: no orphan result, no result answering
    the same call twice, and no call left unanswered when the conversation
    moves on.  Raises ``ProtocolViolation`` on the first breach.
    """
    pending: set[str] = set()

    for index, message in enumerate(messages):
        if isinstance(message, ToolMessage):
            if message.tool_call_id not in pending:
                raise ProtocolViolation(
                    f"Tool result at position {index} references unknown "
                    f"call id {message.tool_call_id!r}"
                )
            pending.remove(message.tool_call_id)
            continue

        if pending:
            raise ProtocolViolation(
                f"Tool calls {sorted(pending)} left unanswered before position {index}"
            )

        if isinstance(message, AIMessage) and message.tool_calls:
            call_ids = [call.get("id") for call in message.tool_calls]
            if any(not call_id for call_id in call_ids) or len(set(call_ids)) != len(call_ids):
                raise ProtocolViolation(
                    f"Assistant message at position {index} has missing or duplicate call ids"
                )
            pending = set(call_ids)

    if pending:
        raise ProtocolViolation(f"Tool calls {sorted(pending)} left unanswered")


def messages_to_payload(messages: Sequence[BaseMessage]) -> list[dict[str, Any]]:
    """Serialise messages to JSON-compatible dicts for storage."""
    return messages_to_dict(list(messages))


def messages_from_payload(payload: Sequence[dict[str, Any]]) -> list[BaseMessage]:
    """Inverse of ``messages_to_payload``."""
    return messages_from_dict(list(payload))
