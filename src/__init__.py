"""BeautiBuk Agent: an AI booking assistant for beauty and wellness businesses.

Architecture Overview
=====================

The agent is tool-calling middleware.  The language model decides which
remote tools to call (search businesses, services, employees, bookings,
customers); the agent only does protocol bookkeeping around those calls.

Each chat turn is a **LangGraph** state machine with three nodes:

1. **completion** — sends the system prompt, the optional RAG context, the
   recent history and the turn so far to Claude, with the tool catalog
   bound.  The model answers or asks for tools.

2. **tools** — executes the requested calls against the MCP tool server,
   in order, and appends one tool result per call.  Tool errors are fed
   back to the model instead of failing the turn.

3. **fallback** — ends a turn that hit the round bound or the wall-clock
   budget with a best-effort reply.

Routing: completion → (tool calls?) → tools → completion (loop, bounded)
                    → (answer?) → END

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``, behind a small
  ``CompletionProvider`` interface so the loop never sees vendor formats.
- **Tools**: discovered at every turn from the MCP server (JSON-RPC 2.0 over
  HTTP, ``httpx``).  Listing is retried; calls are not, since they may
  book or cancel.
- **Memory**: sessions live in SQLite and each turn is appended in one
  transaction, so a session never holds an unanswered tool call.  A
  byte-bounded LRU cache fronts reads and is invalidated on every write.
- **RAG**: user messages are embedded (OpenAI) and stored; similar past
  messages above a threshold are injected as a system context message.
- **Resilience**: provider calls use exponential-backoff retries; every
  failure maps to one ``src.errors`` kind and then to a polite reply.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``src/agent.py`` — LangGraph turn graph and the ``Orchestrator``
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/errors.py`` — Error taxonomy
- ``src/models.py`` — Domain models and the tool-result invariant
- ``src/prompts.py`` — System prompt
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/services/`` — Tool server, LLM, embedding, RAG, cache and metrics
- ``src/storage/`` — SQLite session store and LanceDB similarity store
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""

__version__ = "1.0.0"
