"""JSON-RPC client for the remote MCP tool server.

The tool server exposes the business operations (search businesses,
bookings, services, employees, customers) over JSON-RPC 2.0, POSTed to
``{MCP_SERVER_URL}/mcp``.  This client only does transport: discovery via
``tools/list`` and invocation via ``tools/call``.

Error mapping
-------------
- connection refused / timeout / HTTP 5xx      → ``ToolUnavailable``
- JSON-RPC ``error`` object / ``isError`` / 4xx → ``ToolExecutionFailed``
- response id mismatch / invalid JSON body      → ``ProtocolViolation``

Only ``tools/list`` is retried: it is idempotent.  ``tools/call`` may have
side effects (bookings) and is never retried here; failures go back to the
model instead.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any, Protocol

import httpx

from src import __version__
from src.config import MCP_SERVER_URL, MCP_TIMEOUT_SECONDS
from src.errors import (
    AgentError,
    ProtocolViolation,
    ToolExecutionFailed,
    ToolUnavailable,
    UnknownToolError,
)
from src.models import ToolDescriptor
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration (tools/list only) ───────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "beautibuk-agent"


def _extract_text(result: dict[str, Any]) -> str:
    """Join the ``text`` items of an MCP ``content`` list."""
    parts = [
        item.get("text", "")
        for item in result.get("content") or []
        if isinstance(item, dict) and item.get("type", "text") == "text"
    ]
    return "\n".join(part for part in parts if part)


class ToolRegistry(Protocol):
    """What the orchestrator needs from a tool registry."""

    def list_tools(self) -> list[ToolDescriptor]:
        ...

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        ...

    def close(self) -> None:
        ...


class ToolRegistryClient:
    """Discovers and invokes remote tools.

    Request ids come from a per-instance counter guarded by a lock, so
    concurrent turns sharing one client never reuse an id.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
    ):
        self._base_url = base_url or MCP_SERVER_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout or MCP_TIMEOUT_SECONDS,
        )
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._known_tools: dict[str, ToolDescriptor] = {}

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    # ── Transport ────────────────────────────────────────────────────

    def _send(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """POST one JSON-RPC request and return its ``result`` object."""
        request_id = self._next_id()
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        t0 = time.perf_counter()
        try:
            response = self._client.post("/mcp", json=payload)
        except httpx.TransportError as exc:
            metrics.record_failure("tool_server", method, error_type=type(exc).__name__)
            raise ToolUnavailable(
                f"Tool server unreachable ({type(exc).__name__}): {exc}"
            ) from exc
        elapsed = (time.perf_counter() - t0) * 1000

        if response.status_code >= 500:
            metrics.record_failure("tool_server", method, error_type="5xx", latency_ms=elapsed)
            raise ToolUnavailable(f"Tool server error {response.status_code}: {response.text}")
        if response.status_code >= 400:
            metrics.record_failure("tool_server", method, error_type="4xx", latency_ms=elapsed)
            raise ToolExecutionFailed(response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolViolation(f"Tool server returned invalid JSON for {method}") from exc

        if body.get("id") != request_id:
            raise ProtocolViolation(
                f"Response id {body.get('id')!r} does not match request id {request_id}"
            )

        error = body.get("error")
        if error:
            metrics.record_failure("tool_server", method, error_type="rpc_error", latency_ms=elapsed)
            raise ToolExecutionFailed(
                error.get("code", -32000), error.get("message", "Unknown error"),
            )

        result = body.get("result")
        if not isinstance(result, dict):
            raise ProtocolViolation(f"Response to {method} has neither result nor error")

        metrics.record_success("tool_server", method, latency_ms=elapsed)
        return result

    # ── Public API ───────────────────────────────────────────────────

    def initialize(self) -> dict[str, Any]:
        """Perform the MCP handshake.  Returns the server's capabilities."""
        result = self._send(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME, "version": __version__},
            },
        )
        logger.info(
            "Connected to tool server %s (%s)",
            self._base_url, result.get("serverInfo", {}).get("name", "unknown"),
        )
        return result

    def list_tools(self) -> list[ToolDescriptor]:
        """Return the tool catalog, in server order.

        Transport failures are retried with exponential backoff; anything
        still failing surfaces as ``ToolUnavailable``.
        """
        last_error: AgentError | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                result = self._send("tools/list", {})
                break
            except ToolUnavailable as exc:
                last_error = exc
                backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
                logger.warning(
                    "tools/list attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, exc, backoff,
                )
                time.sleep(backoff)
            except (ToolExecutionFailed, ProtocolViolation) as exc:
                raise ToolUnavailable(f"Tool listing rejected: {exc}") from exc
        else:
            raise ToolUnavailable(
                f"Tool listing failed after {MAX_RETRIES} retries: {last_error}"
            ) from last_error

        try:
            tools = [ToolDescriptor.from_mcp(entry) for entry in result.get("tools") or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise ToolUnavailable(f"Malformed tool catalog: {exc}") from exc

        self._known_tools = {tool.name: tool for tool in tools}
        logger.debug("Tool catalog: %s", ", ".join(self._known_tools))
        return tools

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """Invoke *name* with *arguments* and return its text result.

        The name must come from a previous ``list_tools`` call; arguments
        are passed through untouched.
        """
        if name not in self._known_tools:
            raise UnknownToolError(name)

        result = self._send("tools/call", {"name": name, "arguments": arguments or {}})
        text = _extract_text(result)
        if result.get("isError"):
            raise ToolExecutionFailed("tool_error", text or f"Tool {name} reported an error")
        return text

    def close(self) -> None:
        self._client.close()
