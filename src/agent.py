"""LangGraph tool-calling orchestrator for the BeautiBuk agent.

Architecture:
  Each chat turn runs one pass through a small LangGraph ``StateGraph``:

    1. **completion** — asks the completion provider for the next step,
                        given the prompt prefix, the turn so far and the
                        tool catalog
    2. **tools**      — executes every requested tool call, in order, and
                        appends one tool result per call
    3. **fallback**   — forced termination (round bound or wall-clock
                        budget) with a best-effort final message

  Routing:
    completion → (tool calls?)     → tools → completion (loop)
               → (final answer?)   → END
               → (bound exceeded or budget spent?) → fallback → END
    tools      → (budget spent?)   → fallback → END

  The loop is iterative and bounded by ``MAX_TOOL_ROUNDS``: the model always
  sees the results of the last allowed round, and a request for one more
  round is dropped in favour of the fallback reply; the graph's
  recursion limit is derived from the same number, so a misbehaving model
  cannot recurse past it.

  Memory:
    History lives in the session store, not in a LangGraph checkpointer.
    ``Orchestrator.process_message`` loads it, runs the graph over the new
    turn and appends the turn's messages in one atomic write.
"""

from __future__ import annotations

import json
import logging
import operator
import time
from collections.abc import Callable, Sequence
from typing import Annotated

from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    trim_messages,
)
from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from src.config import (
    DATABASE_PATH,
    EMBEDDING_DIMENSIONS,
    MAX_HISTORY_MESSAGES,
    MAX_TOOL_ROUNDS,
    OPENAI_API_KEY,
    SESSION_CACHE_MAX_BYTES,
    TURN_TIMEOUT_SECONDS,
    VECTOR_DB_PATH,
)
from src.errors import (
    AgentError,
    ProtocolViolation,
    ProviderUnavailable,
    StorageFailure,
    ToolExecutionFailed,
    ToolUnavailable,
)
from src.models import ChatResult, ToolDescriptor, validate_tool_results
from src.prompts import get_system_prompt
from src.services.cache import LRUCache
from src.services.embeddings import OpenAIEmbedder
from src.services.llm import AnthropicCompletionProvider, CompletionProvider, content_text
from src.services.metrics import metrics
from src.services.rag import RAGRetriever
from src.services.tool_client import ToolRegistry, ToolRegistryClient
from src.storage.sessions import CachedSessionStore, SessionStore, SQLiteSessionStore
from src.storage.similarity import LanceDBSimilarityStore

logger = logging.getLogger(__name__)


# ── User-facing texts ────────────────────────────────────────────────

ROUND_LIMIT_MESSAGE = "I was unable to complete this request after several attempts."
TIMEOUT_MESSAGE = (
    "I'm sorry, this request is taking longer than expected. "
    "Please try again in a moment."
)
PROVIDER_DEGRADED_MESSAGE = (
    "I'm sorry, our assistant is temporarily unavailable. Please try again shortly."
)
TOOLS_DEGRADED_MESSAGE = (
    "I'm sorry, I can't reach the booking system right now. Please try again shortly."
)
PROTOCOL_DEGRADED_MESSAGE = (
    "I'm sorry, something went wrong while handling your request. Please try again."
)

FALLBACK_MESSAGES = {
    "round_limit": ROUND_LIMIT_MESSAGE,
    "timeout": TIMEOUT_MESSAGE,
}


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict):
    """The state that flows through the graph for one turn.

    ``prompt`` is the fixed prefix (system messages + windowed history) and
    is never persisted.  ``turn`` accumulates the messages produced by this
    turn via ``operator.add``, starting with the user message; it is what
    gets appended to the session once the graph finishes.

    ``outcome`` is internal plumbing read by the conditional edges:
    ``tools`` | ``final`` | ``round_limit`` | ``timeout``.
    """

    prompt: list[AnyMessage]
    tools: list[ToolDescriptor]
    turn: Annotated[list[AnyMessage], operator.add]
    rounds: int
    deadline: float
    outcome: str


# ── Node: completion (AwaitingCompletion) ───────────────────────────


def _make_completion_node(
    provider: CompletionProvider,
    max_rounds: int,
    clock: Callable[[], float],
):
    """Create the node that asks the model for its next step."""

    def completion_node(state: TurnState) -> dict:
        if clock() >= state["deadline"]:
            return {"outcome": "timeout"}

        completion = provider.complete(
            state["prompt"] + state["turn"],
            state["tools"],
            budget=state["deadline"] - clock(),
        )

        if not completion.wants_tools:
            if not completion.content.strip():
                raise ProtocolViolation("Completion has neither content nor tool calls")
            return {"turn": [AIMessage(content=completion.content)], "outcome": "final"}

        catalog = {tool.name for tool in state["tools"]}
        unknown = [call.name for call in completion.tool_calls if call.name not in catalog]
        if unknown:
            raise ProtocolViolation(f"Model requested tools not in the catalog: {unknown}")

        call_ids = [call.call_id for call in completion.tool_calls]
        if len(set(call_ids)) != len(call_ids):
            raise ProtocolViolation(f"Duplicate tool call ids in one completion: {call_ids}")

        # Past the budget or the round bound: drop the request rather than
        # persist unanswered calls
        if clock() >= state["deadline"]:
            return {"outcome": "timeout"}
        if state["rounds"] >= max_rounds:
            return {"outcome": "round_limit"}

        logger.debug(
            "Round %d: model requested %s",
            state["rounds"] + 1, ", ".join(call.name for call in completion.tool_calls),
        )
        return {"turn": [completion.to_message()], "outcome": "tools"}

    return completion_node


# ── Node: tools (ExecutingTools) ────────────────────────────────────


def _make_tools_node(registry: ToolRegistry, clock: Callable[[], float]):
    """Create the node that runs the requested tool calls in model order.

    Tool failures become error tool results so the model can recover;
    they never abort the turn.
    """

    def tools_node(state: TurnState) -> dict:
        request = state["turn"][-1]
        results: list[ToolMessage] = []

        for call in request.tool_calls:
            status = "success"
            try:
                content = registry.call_tool(call["name"], call["args"])
            except ToolExecutionFailed as exc:
                logger.warning("Tool %s failed: %s", call["name"], exc)
                content = json.dumps(exc.to_payload())
                status = "error"
            except ToolUnavailable as exc:
                logger.warning("Tool %s unreachable: %s", call["name"], exc)
                content = json.dumps({"error": {"code": "unavailable", "message": str(exc)}})
                status = "error"

            results.append(
                ToolMessage(
                    content=content or "(no output)",
                    tool_call_id=call["id"],
                    name=call["name"],
                    status=status,
                )
            )

        outcome = "timeout" if clock() >= state["deadline"] else "tools"
        return {"turn": results, "rounds": state["rounds"] + 1, "outcome": outcome}

    return tools_node


# ── Node: fallback (forced termination) ─────────────────────────────


def fallback_node(state: TurnState) -> dict:
    logger.warning(
        "Turn force-terminated (%s) after %d round(s)", state["outcome"], state["rounds"],
    )
    return {"turn": [AIMessage(content=FALLBACK_MESSAGES[state["outcome"]])]}


# ── Conditional edges ────────────────────────────────────────────────


def route_after_completion(state: TurnState) -> str:
    outcome = state["outcome"]
    if outcome == "tools":
        return "tools"
    if outcome in FALLBACK_MESSAGES:
        return "fallback"
    return END


def route_after_tools(state: TurnState) -> str:
    if state["outcome"] == "tools":
        return "completion"
    return "fallback"


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(
    provider: CompletionProvider,
    registry: ToolRegistry,
    *,
    max_rounds: int,
    clock: Callable[[], float] = time.monotonic,
):
    """Build and compile the per-turn tool-calling graph.

    Returns a compiled graph that can be invoked with an initial
    ``TurnState``; no checkpointer is attached, so one compiled graph
    serves concurrent turns.
    """
    graph = StateGraph(TurnState)

    graph.add_node("completion", _make_completion_node(provider, max_rounds, clock))
    graph.add_node("tools", _make_tools_node(registry, clock))
    graph.add_node("fallback", fallback_node)

    graph.add_edge(START, "completion")
    graph.add_conditional_edges(
        "completion",
        route_after_completion,
        {"tools": "tools", "fallback": "fallback", END: END},
    )
    graph.add_conditional_edges(
        "tools",
        route_after_tools,
        {"completion": "completion", "fallback": "fallback"},
    )
    graph.add_edge("fallback", END)

    return graph.compile()


# ── Orchestrator ─────────────────────────────────────────────────────


class Orchestrator:
    """Turns ``(session_id, user_text)`` into a final assistant reply.

    Side effects of a completed turn: the turn's messages are appended to
    the session store (atomically) and the user text's embedding is stored
    for future retrieval.  Degraded turns persist nothing.
    """

    def __init__(
        self,
        sessions: SessionStore,
        registry: ToolRegistry,
        provider: CompletionProvider,
        retriever: RAGRetriever | None = None,
        *,
        max_rounds: int | None = None,
        turn_timeout: float | None = None,
        max_history: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sessions = sessions
        self._registry = registry
        self._retriever = retriever
        self._max_rounds = MAX_TOOL_ROUNDS if max_rounds is None else max_rounds
        self._turn_timeout = TURN_TIMEOUT_SECONDS if turn_timeout is None else turn_timeout
        self._max_history = MAX_HISTORY_MESSAGES if max_history is None else max_history
        self._clock = clock
        if self._max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")

        self._graph = create_turn_graph(
            provider, registry, max_rounds=self._max_rounds, clock=clock,
        )
        # completion + tools per round, the closing completion and the fallback
        self._recursion_limit = 2 * self._max_rounds + 5

    def _build_prompt(
        self, history: Sequence[BaseMessage], context: str | None,
    ) -> list[BaseMessage]:
        """System messages followed by the most recent window of history."""
        prompt: list[BaseMessage] = [SystemMessage(content=get_system_prompt())]
        if context:
            prompt.append(SystemMessage(content=context))
        window = trim_messages(
            list(history),
            strategy="last",
            token_counter=len,
            max_tokens=self._max_history,
            start_on="human",
        )
        return prompt + window

    def _recall(
        self, text: str, budget: float,
    ) -> tuple[list[float] | None, str | None]:
        """Embed *text* once and retrieve context for it (RAG disabled → ``None``s)."""
        if self._retriever is None:
            return None, None
        vector = self._retriever.embed(text, budget=budget)
        snippets = self._retriever.retrieve(text, vector=vector)
        return vector, self._retriever.format_context(snippets)

    def _degraded(
        self, session_id: str, message: str, started: float,
    ) -> ChatResult:
        elapsed = (time.perf_counter() - started) * 1000
        metrics.record_turn("degraded", 0, elapsed)
        return ChatResult(response=message, session_id=session_id, outcome="degraded")

    def process_message(self, session_id: str, text: str) -> ChatResult:
        """Run one full turn.

        Raises ``StorageFailure`` when the session cannot be read or the
        turn cannot be persisted; every other failure becomes a degraded
        reply.  A failure to store the embedding after the turn committed is
        logged and the reply is still returned.
        """
        started = time.perf_counter()
        session = self._sessions.load_or_create(session_id)

        deadline = self._clock() + self._turn_timeout

        try:
            vector, context = self._recall(text, deadline - self._clock())
            tools = self._registry.list_tools()
            state = self._graph.invoke(
                {
                    "prompt": self._build_prompt(session.messages, context),
                    "tools": tools,
                    "turn": [HumanMessage(content=text)],
                    "rounds": 0,
                    "deadline": deadline,
                    "outcome": "",
                },
                config={"recursion_limit": self._recursion_limit},
            )
            validate_tool_results(state["turn"])
        except ProviderUnavailable as exc:
            logger.warning("Session %s: provider unavailable: %s", session_id, exc)
            return self._degraded(session_id, PROVIDER_DEGRADED_MESSAGE, started)
        except ToolUnavailable as exc:
            logger.warning("Session %s: tools unavailable: %s", session_id, exc)
            return self._degraded(session_id, TOOLS_DEGRADED_MESSAGE, started)
        except ProtocolViolation as exc:
            logger.error("Session %s: protocol violation: %s", session_id, exc)
            return self._degraded(session_id, PROTOCOL_DEGRADED_MESSAGE, started)

        turn = state["turn"]
        self._sessions.append(session_id, turn)
        if vector is not None:
            # History is committed at this point; the embedding is best effort
            try:
                self._retriever.remember(session_id, text, vector)
            except StorageFailure as exc:
                logger.error("Session %s: embedding not stored: %s", session_id, exc)

        elapsed = (time.perf_counter() - started) * 1000
        metrics.record_turn(state["outcome"], state["rounds"], elapsed)
        logger.info(
            "Session %s: turn %s in %.0fms (%d tool round(s), %d message(s))",
            session_id, state["outcome"], elapsed, state["rounds"], len(turn),
        )
        return ChatResult(
            response=content_text(turn[-1].content),
            session_id=session_id,
            outcome=state["outcome"],
            rounds=state["rounds"],
        )

    def close(self) -> None:
        self._registry.close()


def create_orchestrator() -> Orchestrator:
    """Build the production orchestrator from configuration.

    RAG is enabled only when an embedding provider key is configured.
    """
    registry = ToolRegistryClient()
    try:
        registry.initialize()
    except AgentError as exc:
        # Each turn lists tools anyway and degrades if the server is still down
        logger.warning("Tool server handshake failed: %s", exc)

    sessions = CachedSessionStore(
        SQLiteSessionStore(DATABASE_PATH), LRUCache(max_bytes=SESSION_CACHE_MAX_BYTES),
    )

    retriever = None
    if OPENAI_API_KEY:
        retriever = RAGRetriever(
            OpenAIEmbedder(), LanceDBSimilarityStore(VECTOR_DB_PATH, EMBEDDING_DIMENSIONS),
        )
    else:
        logger.info("OPENAI_API_KEY not set; RAG context disabled")

    orchestrator = Orchestrator(sessions, registry, AnthropicCompletionProvider(), retriever)
    logger.debug(
        "Orchestrator ready: max %d tool rounds, %.0fs turn budget, RAG %s",
        MAX_TOOL_ROUNDS, TURN_TIMEOUT_SECONDS, "on" if retriever else "off",
    )
    return orchestrator
