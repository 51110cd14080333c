"""Error taxonomy for the orchestration core.

Every failure inside the agent is mapped to one of these kinds before it
reaches the HTTP boundary:

- ``ProviderUnavailable``  — completion / embedding provider unreachable
- ``ToolUnavailable``      — tool server listing or transport failure
- ``ToolExecutionFailed``  — well-formed error returned by a remote tool
- ``ProtocolViolation``    — malformed completion, unknown tool, orphan result
- ``StorageFailure``       — session / similarity store read or write failure
"""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """Base class for every error raised by the orchestration core."""


class ProviderUnavailable(AgentError):
    """A completion or embedding provider failed after all retries."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} unavailable: {message}")


class ToolUnavailable(AgentError):
    """The tool server could not be reached (connection, timeout, 5xx)."""


class ToolExecutionFailed(AgentError):
    """The tool server answered with a well-formed error."""

    def __init__(self, code: int | str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Tool execution failed ({code}): {message}")

    def to_payload(self) -> dict[str, Any]:
        """Structured description fed back to the model as tool-result content."""
        return {"error": {"code": self.code, "message": self.message}}


class ProtocolViolation(AgentError):
    """The tool-calling protocol was broken by one of the peers."""


class UnknownToolError(ProtocolViolation):
    """``call_tool`` was asked for a name that was never listed."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name!r}")


class StorageFailure(AgentError):
    """A durable store could not be read or written.

    When raised while committing a turn, ``pending`` holds the messages that
    were not persisted so the caller can retry the write.
    """

    def __init__(self, message: str, *, pending: list | None = None):
        self.pending = pending or []
        super().__init__(message)
