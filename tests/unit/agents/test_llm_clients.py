"""
Unit tests for the LLM clients and the provider router.

SDK clients are replaced by mocks; no network calls are made.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from event_ingestion.agents.llm import LLMUnavailableError, get_llm_client
from event_ingestion.agents.llm.anthropic_client import AnthropicLLMClient
from event_ingestion.agents.llm.openai_client import OpenAILLMClient
from event_ingestion.agents.output_models import CategorizationOutput


def _call(client):
    return asyncio.run(
        client.complete_structured(
            system_prompt="system",
            user_prompt="Titel: Kent",
            output_schema=CategorizationOutput,
        )
    )


class TestProviderRouter:
    """Tests for get_llm_client()."""

    def test_openai_default(self):
        client = get_llm_client("openai")
        assert isinstance(client, OpenAILLMClient)
        assert client.model_name == "gpt-4o-mini"

    def test_anthropic(self):
        client = get_llm_client(" Anthropic ", model_name="claude-test")
        assert isinstance(client, AnthropicLLMClient)
        assert client.model_name == "claude-test"

    def test_unknown_provider_falls_back_to_openai(self):
        assert isinstance(get_llm_client("mistral"), OpenAILLMClient)


class TestOpenAIClient:
    """Tests for OpenAILLMClient."""

    def test_unavailable_without_key(self):
        client = OpenAILLMClient(api_key="")
        assert not client.is_available
        with pytest.raises(LLMUnavailableError):
            _call(client)

    def test_structured_call(self):
        client = OpenAILLMClient(api_key="sk-test", temperature=0.3)
        output = CategorizationOutput(categories=["Scen"])
        usage = SimpleNamespace(prompt_tokens=120, completion_tokens=8, total_tokens=128)
        sdk = MagicMock()
        sdk.chat.completions.create_with_completion = AsyncMock(
            return_value=(output, SimpleNamespace(usage=usage))
        )
        client._client = sdk

        assert _call(client) is output

        kwargs = sdk.chat.completions.create_with_completion.call_args.kwargs
        assert kwargs["response_model"] is CategorizationOutput
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"][1] == {"role": "user", "content": "Titel: Kent"}
        assert client.get_token_usage() == {
            "prompt_tokens": 120,
            "completion_tokens": 8,
            "total": 128,
        }

    def test_sdk_client_built_once_on_first_call(self):
        client = OpenAILLMClient(api_key="sk-test")
        sdk = MagicMock()
        sdk.chat.completions.create_with_completion = AsyncMock(
            return_value=(CategorizationOutput(categories=["Sport"]), SimpleNamespace(usage=None))
        )
        with patch("event_ingestion.agents.llm.openai_client.instructor.from_openai", return_value=sdk) as build:
            _call(client)
            _call(client)
        assert build.call_count == 1
        assert client.get_token_usage()["total"] == 0


class TestAnthropicClient:
    """Tests for AnthropicLLMClient."""

    def _response(self, *blocks):
        return SimpleNamespace(
            content=list(blocks),
            usage=SimpleNamespace(input_tokens=100, output_tokens=20),
        )

    def test_unavailable_without_key(self):
        client = AnthropicLLMClient(api_key="")
        assert not client.is_available
        with pytest.raises(LLMUnavailableError):
            _call(client)

    def test_parses_tool_use_block(self):
        client = AnthropicLLMClient(api_key="key")
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(
            return_value=self._response(
                SimpleNamespace(type="text", text="thinking"),
                SimpleNamespace(type="tool_use", input={"categories": ["Konst", "Sport"]}),
            )
        )
        client._client = sdk

        result = _call(client)

        assert result.categories == ["Konst", "Sport"]
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": "structured_output"}
        assert kwargs["tools"][0]["input_schema"] == CategorizationOutput.model_json_schema()
        assert client.get_token_usage()["total"] == 120

    def test_missing_tool_use_block(self):
        client = AnthropicLLMClient(api_key="key")
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(
            return_value=self._response(SimpleNamespace(type="text", text="Scen"))
        )
        client._client = sdk
        with pytest.raises(ValueError):
            _call(client)
