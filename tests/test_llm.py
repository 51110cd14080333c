"""Tests for the Anthropic completion provider adapter."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from src.errors import ProtocolViolation, ProviderUnavailable
from src.models import ToolDescriptor
from src.services.llm import (
    MAX_RETRIES,
    AnthropicCompletionProvider,
    content_text,
    merge_system_messages,
    message_to_completion,
)

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status_code: int):
    return cls(
        message=f"HTTP {status_code}",
        response=httpx.Response(status_code, request=_REQUEST),
        body=None,
    )


def _provider(response=None, side_effect=None) -> tuple[AnthropicCompletionProvider, MagicMock]:
    chat_model = MagicMock()
    runnable = chat_model.bind_tools.return_value
    runnable.invoke.return_value = response
    runnable.invoke.side_effect = side_effect
    chat_model.invoke.return_value = response
    return AnthropicCompletionProvider(chat_model=chat_model), chat_model


TOOLS = [ToolDescriptor(name="search_businesses", description="Search businesses")]


# ── Translation ──────────────────────────────────────────────────────


class TestMessageToCompletion:
    def test_final_answer(self):
        completion = message_to_completion(AIMessage(content="I found 2 salons in Athens."))
        assert completion.content == "I found 2 salons in Athens."
        assert not completion.wants_tools

    def test_tool_calls_keep_order_and_arguments(self):
        message = AIMessage(
            content=[{"type": "text", "text": "Let me look."}],
            tool_calls=[
                {"name": "search_businesses", "args": {"query": "haircut"}, "id": "toolu_1"},
                {"name": "list_services", "args": {}, "id": "toolu_2"},
            ],
        )
        completion = message_to_completion(message)
        assert completion.content == "Let me look."
        assert [c.call_id for c in completion.tool_calls] == ["toolu_1", "toolu_2"]
        assert completion.tool_calls[0].arguments == {"query": "haircut"}

    def test_invalid_tool_calls_are_protocol_violations(self):
        message = AIMessage(
            content="",
            invalid_tool_calls=[
                {"name": "search_businesses", "args": "{not json", "id": "toolu_1", "error": "bad"},
            ],
        )
        with pytest.raises(ProtocolViolation):
            message_to_completion(message)


class TestHelpers:
    def test_content_text_joins_text_blocks(self):
        blocks = [{"type": "text", "text": "a"}, {"type": "tool_use", "id": "x"}, "b"]
        assert content_text(blocks) == "ab"

    def test_merge_system_messages_folds_into_one_leading_message(self):
        merged = merge_system_messages([
            SystemMessage(content="persona"),
            SystemMessage(content="context"),
            HumanMessage(content="hi"),
        ])
        assert len(merged) == 2
        assert merged[0].content == "persona\n\ncontext"
        assert isinstance(merged[1], HumanMessage)

    def test_merge_without_system_messages_is_identity(self):
        messages = [HumanMessage(content="hi")]
        assert merge_system_messages(messages) == messages


# ── Provider ─────────────────────────────────────────────────────────


class TestAnthropicCompletionProvider:
    def test_binds_tools_in_anthropic_format(self):
        provider, chat_model = _provider(AIMessage(content="Hello!"))
        completion = provider.complete([HumanMessage(content="hi")], TOOLS)

        assert completion.content == "Hello!"
        bound = chat_model.bind_tools.call_args[0][0]
        assert bound == [{
            "name": "search_businesses",
            "description": "Search businesses",
            "input_schema": {"type": "object", "properties": {}},
        }]

    def test_no_tools_skips_binding(self):
        provider, chat_model = _provider(AIMessage(content="Hello!"))
        provider.complete([HumanMessage(content="hi")], [])
        chat_model.bind_tools.assert_not_called()
        chat_model.invoke.assert_called_once()

    @patch("src.services.llm.time.sleep")
    def test_retries_rate_limits_then_succeeds(self, mock_sleep):
        provider, chat_model = _provider(side_effect=[
            _status_error(anthropic.RateLimitError, 429),
            anthropic.APIConnectionError(request=_REQUEST),
            AIMessage(content="Back online."),
        ])
        completion = provider.complete([HumanMessage(content="hi")], TOOLS)

        assert completion.content == "Back online."
        assert mock_sleep.call_count == 2

    @patch("src.services.llm.time.sleep")
    def test_exhausted_retries_raise_provider_unavailable(self, mock_sleep):
        provider, chat_model = _provider(
            side_effect=_status_error(anthropic.InternalServerError, 529),
        )
        with pytest.raises(ProviderUnavailable) as exc_info:
            provider.complete([HumanMessage(content="hi")], TOOLS)

        assert exc_info.value.service == "anthropic"
        assert chat_model.bind_tools.return_value.invoke.call_count == MAX_RETRIES

    @patch("src.services.llm.time.sleep")
    def test_bad_request_is_not_retried(self, mock_sleep):
        provider, chat_model = _provider(
            side_effect=_status_error(anthropic.BadRequestError, 400),
        )
        with pytest.raises(ProviderUnavailable):
            provider.complete([HumanMessage(content="hi")], TOOLS)

        assert chat_model.bind_tools.return_value.invoke.call_count == 1
        mock_sleep.assert_not_called()

    def test_retries_stop_when_turn_budget_is_spent(self):
        now = [0.0]

        def timed_out(prompt):
            now[0] += 30.0
            raise anthropic.APIConnectionError(request=_REQUEST)

        def sleep(seconds):
            now[0] += seconds

        chat_model = MagicMock()
        chat_model.bind_tools.return_value.invoke.side_effect = timed_out
        provider = AnthropicCompletionProvider(chat_model=chat_model, clock=lambda: now[0])

        with patch("src.services.llm.time.sleep", side_effect=sleep) as mock_sleep:
            with pytest.raises(ProviderUnavailable, match="budget"):
                provider.complete([HumanMessage(content="hi")], TOOLS, budget=60.0)

        assert chat_model.bind_tools.return_value.invoke.call_count == 2
        assert mock_sleep.call_count == 1
        assert now[0] <= 61.0

    @patch("src.services.llm.time.sleep")
    def test_without_budget_all_retries_run(self, mock_sleep):
        provider, chat_model = _provider(
            side_effect=anthropic.APIConnectionError(request=_REQUEST),
        )
        with pytest.raises(ProviderUnavailable, match="failed after"):
            provider.complete([HumanMessage(content="hi")], TOOLS)
        assert mock_sleep.call_count == MAX_RETRIES
