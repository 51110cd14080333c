"""Completion provider adapter.

The orchestrator depends only on ``CompletionProvider.complete``; vendor
specifics (message format, tool schema format, SDK errors) stay in the
adapter.  ``AnthropicCompletionProvider`` talks to Claude through
``ChatAnthropic`` and retries transient failures with exponential backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from src.config import (
    ANTHROPIC_API_KEY,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    MODEL_NAME,
)
from src.errors import ProtocolViolation, ProviderUnavailable
from src.models import Completion, ToolDescriptor, ToolInvocationRequest
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

# Connection errors (timeouts included), 429 and 5xx are worth retrying
_RETRYABLE_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class CompletionProvider(Protocol):
    """Anything that can complete a conversation, optionally with tools."""

    def complete(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[ToolDescriptor],
        *,
        budget: float | None = None,
    ) -> Completion:
        """Return either a final answer or the tool calls the model wants.

        *budget* is the number of seconds the caller can still wait; no retry
        is started that would outlast it.
        """
        ...


def content_text(content: str | list[Any]) -> str:
    """Flatten LangChain message content (string or content blocks) to text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def message_to_completion(message: AIMessage) -> Completion:
    """Translate a vendor ``AIMessage`` into a ``Completion``."""
    if message.invalid_tool_calls:
        names = [call.get("name") for call in message.invalid_tool_calls]
        raise ProtocolViolation(f"Model produced unparseable tool calls: {names}")

    calls: list[ToolInvocationRequest] = []
    for call in message.tool_calls:
        if not call.get("id") or not call.get("name"):
            raise ProtocolViolation(f"Tool call without id or name: {call!r}")
        calls.append(
            ToolInvocationRequest(
                call_id=call["id"],
                name=call["name"],
                arguments=call.get("args") or {},
            )
        )
    return Completion(content=content_text(message.content), tool_calls=calls)


def merge_system_messages(messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    """Fold every system message into one leading message.

    The Messages API takes a single system prompt.
    """
    system_parts = [
        content_text(message.content)
        for message in messages
        if isinstance(message, SystemMessage)
    ]
    rest = [message for message in messages if not isinstance(message, SystemMessage)]
    if not system_parts:
        return rest
    return [SystemMessage(content="\n\n".join(system_parts)), *rest]


def _build_chat_model() -> ChatAnthropic:
    """Build the Claude chat model.  SDK-level retries are off; we retry here."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=0,
    )


class AnthropicCompletionProvider:
    """``CompletionProvider`` backed by Anthropic's Messages API."""

    def __init__(
        self,
        chat_model: ChatAnthropic | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._llm = chat_model or _build_chat_model()
        self._clock = clock

    def complete(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[ToolDescriptor],
        *,
        budget: float | None = None,
    ) -> Completion:
        runnable = (
            self._llm.bind_tools([tool.to_anthropic() for tool in tools])
            if tools
            else self._llm
        )

        prompt = merge_system_messages(messages)
        started = self._clock()
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = runnable.invoke(prompt)
            except _RETRYABLE_ERRORS as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_failure(
                    "anthropic", "complete",
                    error_type=type(exc).__name__, latency_ms=elapsed,
                )
                last_error = exc
                backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
                if budget is not None and self._clock() - started + backoff >= budget:
                    logger.warning(
                        "Completion attempt %d/%d failed (%s); no turn budget left to retry",
                        attempt, MAX_RETRIES, type(exc).__name__,
                    )
                    raise ProviderUnavailable(
                        "anthropic", f"turn budget spent after {attempt} attempt(s): {exc}",
                    ) from exc
                logger.warning(
                    "Completion attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__, backoff,
                )
                time.sleep(backoff)
                continue
            except anthropic.APIError as exc:
                metrics.record_failure("anthropic", "complete", error_type=type(exc).__name__)
                raise ProviderUnavailable("anthropic", str(exc)) from exc

            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("anthropic", "complete", latency_ms=elapsed)
            logger.debug("Completion answered in %.0fms (%d tools bound)", elapsed, len(tools))
            return message_to_completion(response)

        raise ProviderUnavailable(
            "anthropic", f"failed after {MAX_RETRIES} retries: {last_error}",
        ) from last_error
