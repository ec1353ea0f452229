"""Tests for the model gateway strategies and provider error mapping."""

import json
import math
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from complaint_triage.config import Settings
from complaint_triage.core import (
    ConfigurationException,
    EmbeddingUnavailableException,
    LLMException,
    ProviderUnavailableException,
)
from complaint_triage.infrastructure.llm import (
    ANTHROPIC_JSON_INSTRUCTION,
    AnthropicGateway,
    MockLLMGateway,
    OpenAIGateway,
    create_llm_gateway,
    pseudo_embedding,
)

MESSAGES = [
    {"role": "system", "content": "You are a triage assistant."},
    {"role": "user", "content": "Classify this complaint."},
]


def _anthropic_request():
    return httpx.Request("POST", "https://api.anthropic.test/v1/messages")


def _openai_request():
    return httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


def _anthropic_client(text="Hello", model="claude-test", input_tokens=40, output_tokens=12, error=None):
    response = MagicMock()
    response.content = [MagicMock(type="text", text=text)]
    response.model = model
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response, side_effect=error)
    client.close = AsyncMock()
    return client


def _anthropic_status_error(error_class, status):
    return error_class(
        f"status {status}",
        response=httpx.Response(status, request=_anthropic_request()),
        body=None
    )


# ============================================================================
# Anthropic
# ============================================================================

class TestAnthropicGateway:
    @pytest.mark.asyncio
    async def test_json_mode_prefills_brace(self):
        client = _anthropic_client(text='"primaryCategory": "other"}')

        gateway = AnthropicGateway(client=client)
        result = await gateway.complete(MESSAGES, json_mode=True, temperature=0.1, max_tokens=256)

        assert result.content == '{"primaryCategory": "other"}'
        assert result.model == "claude-test"
        assert result.prompt_tokens == 40
        assert result.completion_tokens == 12

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "You are a triage assistant." + ANTHROPIC_JSON_INSTRUCTION
        assert kwargs["messages"][-1] == {"role": "assistant", "content": "{"}
        assert all(m["role"] != "system" for m in kwargs["messages"])
        assert kwargs["max_tokens"] == 256
        assert kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_plain_mode_has_no_prefill(self):
        client = _anthropic_client(text="Hello")

        result = await AnthropicGateway(client=client).complete(MESSAGES)

        assert result.content == "Hello"
        assert client.messages.create.call_args.kwargs["messages"][-1]["role"] == "user"

    @pytest.mark.asyncio
    async def test_only_text_blocks_are_joined(self):
        client = _anthropic_client()
        client.messages.create.return_value.content = [
            MagicMock(type="text", text='"a": 1'),
            MagicMock(type="tool_use", text="ignored"),
            MagicMock(type="text", text="}"),
        ]

        result = await AnthropicGateway(client=client).complete(MESSAGES, json_mode=True)

        assert result.content == '{"a": 1}'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_class,status", [
        (anthropic.RateLimitError, 429),
        (anthropic.InternalServerError, 500),
        (anthropic.APIStatusError, 529),
    ])
    async def test_retryable_status_is_provider_unavailable(self, error_class, status):
        client = _anthropic_client(error=_anthropic_status_error(error_class, status))

        with pytest.raises(ProviderUnavailableException) as exc_info:
            await AnthropicGateway(client=client).complete(MESSAGES)
        assert exc_info.value.details["status_code"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        anthropic.APIConnectionError(request=_anthropic_request()),
        anthropic.APITimeoutError(request=_anthropic_request()),
    ])
    async def test_connection_errors_are_provider_unavailable(self, error):
        client = _anthropic_client(error=error)

        with pytest.raises(ProviderUnavailableException):
            await AnthropicGateway(client=client).complete(MESSAGES)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        client = _anthropic_client(error=_anthropic_status_error(anthropic.BadRequestError, 400))

        with pytest.raises(LLMException) as exc_info:
            await AnthropicGateway(client=client).complete(MESSAGES)
        assert not isinstance(exc_info.value, ProviderUnavailableException)
        assert exc_info.value.details["status_code"] == 400

    @pytest.mark.asyncio
    async def test_no_embeddings(self):
        with pytest.raises(EmbeddingUnavailableException):
            await AnthropicGateway(client=_anthropic_client()).embed("text")

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        client = _anthropic_client()

        await AnthropicGateway(client=client).close()

        client.close.assert_awaited_once()

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr("complaint_triage.infrastructure.llm.settings.anthropic_api_key", None)

        with pytest.raises(ConfigurationException):
            AnthropicGateway(api_key="")


# ============================================================================
# OpenAI
# ============================================================================

class TestOpenAIGateway:
    @pytest.mark.asyncio
    async def test_complete_maps_response(self):
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content='{"ok": true}'))]
        response.model = "gpt-test"
        response.usage = MagicMock(prompt_tokens=30, completion_tokens=5)
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)

        result = await OpenAIGateway(client=client).complete(MESSAGES, json_mode=True)

        assert result.content == '{"ok": true}'
        assert result.model == "gpt-test"
        assert result.total_tokens == 35
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        openai.APIConnectionError(request=_openai_request()),
        openai.APITimeoutError(request=_openai_request()),
        openai.RateLimitError(
            "slow down",
            response=httpx.Response(429, request=_openai_request()),
            body=None
        ),
        openai.InternalServerError(
            "server error",
            response=httpx.Response(500, request=_openai_request()),
            body=None
        ),
    ])
    async def test_transient_errors_are_provider_unavailable(self, error):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(ProviderUnavailableException):
            await OpenAIGateway(client=client).complete(MESSAGES)

    @pytest.mark.asyncio
    async def test_bad_request_is_llm_exception(self):
        error = openai.BadRequestError(
            "invalid model",
            response=httpx.Response(400, request=_openai_request()),
            body=None
        )
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(LLMException) as exc_info:
            await OpenAIGateway(client=client).complete(MESSAGES)
        assert not isinstance(exc_info.value, ProviderUnavailableException)

    @pytest.mark.asyncio
    async def test_embedding_failure(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=openai.APIConnectionError(request=_openai_request()))

        with pytest.raises(EmbeddingUnavailableException):
            await OpenAIGateway(client=client).embed("text")

    @pytest.mark.asyncio
    async def test_embedding(self):
        response = MagicMock()
        response.data = [MagicMock(embedding=[0.1, 0.2, 0.3])]
        response.usage = MagicMock(total_tokens=3)
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=response)

        result = await OpenAIGateway(client=client).embed("text")

        assert result.embedding == [0.1, 0.2, 0.3]
        assert result.dimension == 3
        assert result.total_tokens == 3


# ============================================================================
# Mock gateway and provider selection
# ============================================================================

class TestMockGateway:
    @pytest.mark.asyncio
    async def test_json_mode_returns_plain_json(self):
        gateway = MockLLMGateway(dimension=8)
        result = await gateway.complete(
            [{"role": "user", "content": 'Respond with {"executiveSummary": string}'}],
            json_mode=True
        )
        assert "executiveSummary" in json.loads(result.content)

    @pytest.mark.asyncio
    async def test_embeddings_are_deterministic_unit_vectors(self):
        gateway = MockLLMGateway(dimension=8)
        first = await gateway.embed("same text")
        second = await gateway.embed("same text")

        assert first.embedding == second.embedding
        assert first.dimension == 8
        assert math.isclose(sum(v * v for v in first.embedding), 1.0)

    def test_pseudo_embedding_differs_by_text(self):
        assert pseudo_embedding("a", 8) != pseudo_embedding("b", 8)


class TestCreateLLMGateway:
    def test_mock_flag_wins(self):
        config = Settings(mock_llm=True, llm_provider="openai")
        assert isinstance(create_llm_gateway(config), MockLLMGateway)

    def test_anthropic_selected(self):
        config = Settings(mock_llm=False, llm_provider="anthropic", anthropic_api_key="key")
        assert isinstance(create_llm_gateway(config), AnthropicGateway)

    def test_missing_credentials(self):
        config = Settings(mock_llm=False, llm_provider="zai", zai_api_key=None)
        with pytest.raises(ConfigurationException):
            create_llm_gateway(config)

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            Settings(llm_provider="carrier-pigeon")
