"""Unit tests for LLM provider adapters -- OpenAI, Anthropic, Ollama."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.config.settings import Settings
from src.models.conversation import ChatMessage
from src.utils.errors import ProviderError, ProviderTimeoutError, RateLimitError, TransientProviderError


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "anthropic_api_key": "sk-ant-test",
        "ollama_base_url": "http://localhost:11434",
    }
    defaults.update(overrides)
    return Settings(**defaults)


_MESSAGES = [
    ChatMessage(role="user", content="Do you ship abroad?"),
    ChatMessage(role="assistant", content="Yes, to the EU."),
    ChatMessage(role="user", content="How long does it take?"),
]


class _FakeStream:
    """Async context manager + iterator, shaped like the SDK stream objects."""

    def __init__(self, items: list) -> None:
        self._items = items
        self.closed = False

    async def __aenter__(self) -> _FakeStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item


def _request(url: str = "https://api.example.com/v1/chat") -> httpx.Request:
    return httpx.Request("POST", url)


def _openai_chunk(content: str | None) -> MagicMock:
    return MagicMock(choices=[MagicMock(delta=MagicMock(content=content))])


# ======================================================================
# OpenAI LLM Provider
# ======================================================================


class TestOpenAILLMProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_get_provider_name(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        provider = OpenAILLMProvider(settings)
        assert provider.get_provider_name() == "openai"

    def test_is_available_with_key(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        provider = OpenAILLMProvider(settings)
        assert provider.is_available() is True

    def test_is_available_without_key(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        provider = OpenAILLMProvider(_settings(openai_api_key=""))
        assert provider.is_available() is False

    def test_default_model(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        provider = OpenAILLMProvider(_settings(openai_chat_model="gpt-4o"))
        assert provider.get_default_model() == "gpt-4o"

    def test_custom_base_url_is_passed_to_client(self) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI") as client_cls:
            OpenAILLMProvider(_settings(openai_base_url="https://api.together.xyz/v1"))

        kwargs = client_cls.call_args.kwargs
        assert kwargs["base_url"] == "https://api.together.xyz/v1"
        assert kwargs["max_retries"] == 0

    @pytest.mark.asyncio
    async def test_complete_success(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="About 3 days."))]
        mock_response.usage = MagicMock(total_tokens=100)

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            result = await provider.complete("Be helpful.", _MESSAGES, model="gpt-4o", max_tokens=200)

        assert result == "About 3 days."
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 200
        assert kwargs["messages"][0] == {"role": "system", "content": "Be helpful."}
        assert [m["role"] for m in kwargs["messages"][1:]] == ["user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_complete_empty_response_raises(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content=""))]

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(ProviderError):
                await provider.complete("system", _MESSAGES)

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        import openai

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.RateLimitError(
                message="Too many requests",
                response=httpx.Response(429, request=_request()),
                body=None,
            )
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(RateLimitError) as exc_info:
                await provider.complete("system", _MESSAGES)

        assert exc_info.value.provider_name == "openai"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        import openai

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APITimeoutError(request=_request())
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(ProviderTimeoutError):
                await provider.complete("system", _MESSAGES)

    @pytest.mark.asyncio
    async def test_generic_api_error_is_permanent(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        import openai

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APIError(message="Invalid key", request=MagicMock(), body=None)
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(ProviderError) as exc_info:
                await provider.complete("system", _MESSAGES)

        assert not isinstance(exc_info.value, TransientProviderError)

    @pytest.mark.asyncio
    async def test_stream_yields_text_deltas(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider

        stream = _FakeStream(
            [
                _openai_chunk("About "),
                MagicMock(choices=[]),
                _openai_chunk(None),
                _openai_chunk("3 days."),
            ]
        )
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=stream)

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            deltas = [d async for d in provider.stream("system", _MESSAGES)]

        assert deltas == ["About ", "3 days."]
        assert stream.closed is True
        assert mock_client.chat.completions.create.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_connection_error_is_transient(self, settings: Settings) -> None:
        from src.providers.llm.openai_provider import OpenAILLMProvider
        import openai

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=_request())
        )

        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(settings)
            with pytest.raises(TransientProviderError):
                async for _ in provider.stream("system", _MESSAGES):
                    pass


# ======================================================================
# Anthropic LLM Provider
# ======================================================================


class TestAnthropicLLMProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_get_provider_name(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider
        provider = AnthropicLLMProvider(settings)
        assert provider.get_provider_name() == "anthropic"

    def test_is_available_with_key(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider
        provider = AnthropicLLMProvider(settings)
        assert provider.is_available() is True

    def test_is_available_without_key(self) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider
        provider = AnthropicLLMProvider(_settings(anthropic_api_key=""))
        assert provider.is_available() is False

    @pytest.mark.asyncio
    async def test_complete_success(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider

        mock_block = MagicMock()
        mock_block.type = "text"
        mock_block.text = "Anthropic response"

        mock_response = MagicMock()
        mock_response.content = [mock_block]
        mock_response.usage = MagicMock(input_tokens=50, output_tokens=50)

        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=mock_client):
            provider = AnthropicLLMProvider(settings)
            result = await provider.complete("Be brief.", _MESSAGES)

        assert result == "Anthropic response"
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert all(m["role"] != "system" for m in kwargs["messages"])

    @pytest.mark.asyncio
    async def test_adjacent_same_role_messages_are_merged(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider

        mock_block = MagicMock(type="text", text="ok")
        mock_response = MagicMock(content=[mock_block], usage=MagicMock(input_tokens=1, output_tokens=1))
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        messages = [
            ChatMessage(role="user", content="first"),
            ChatMessage(role="user", content="second"),
        ]
        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=mock_client):
            provider = AnthropicLLMProvider(settings)
            await provider.complete("system", messages)

        sent = mock_client.messages.create.call_args.kwargs["messages"]
        assert sent == [{"role": "user", "content": "first\n\nsecond"}]

    @pytest.mark.asyncio
    async def test_no_text_blocks_raises(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider

        mock_response = MagicMock(content=[MagicMock(type="tool_use")])
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=mock_client):
            provider = AnthropicLLMProvider(settings)
            with pytest.raises(ProviderError):
                await provider.complete("system", _MESSAGES)

    @pytest.mark.asyncio
    async def test_overloaded_is_transient(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider
        import anthropic

        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(
            side_effect=anthropic.OverloadedError(
                message="Overloaded",
                response=httpx.Response(529, request=_request()),
                body=None,
            )
        )

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=mock_client):
            provider = AnthropicLLMProvider(settings)
            with pytest.raises(TransientProviderError):
                await provider.complete("system", _MESSAGES)

    @pytest.mark.asyncio
    async def test_stream_yields_only_text_deltas(self, settings: Settings) -> None:
        from src.providers.llm.anthropic_provider import AnthropicLLMProvider

        events = _FakeStream(
            [
                MagicMock(type="message_start"),
                MagicMock(type="content_block_delta", delta=MagicMock(type="text_delta", text="Three ")),
                MagicMock(type="content_block_delta", delta=MagicMock(type="input_json_delta", text="x")),
                MagicMock(type="content_block_delta", delta=MagicMock(type="text_delta", text="days.")),
                MagicMock(type="message_stop"),
            ]
        )
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=events)

        with patch("src.providers.llm.anthropic_provider.anthropic.AsyncAnthropic", return_value=mock_client):
            provider = AnthropicLLMProvider(settings)
            deltas = [d async for d in provider.stream("system", _MESSAGES)]

        assert deltas == ["Three ", "days."]
        assert events.closed is True


# ======================================================================
# Ollama LLM Provider
# ======================================================================


class TestOllamaLLMProvider:
    def test_is_available_with_url(self) -> None:
        from src.providers.llm.ollama_provider import OllamaLLMProvider
        provider = OllamaLLMProvider(_settings())
        assert provider.is_available() is True
        assert provider.get_provider_name() == "ollama"

    def test_is_available_without_url(self) -> None:
        from src.providers.llm.ollama_provider import OllamaLLMProvider
        provider = OllamaLLMProvider(_settings(ollama_base_url=""))
        assert provider.is_available() is False

    def test_client_points_at_v1_endpoint(self) -> None:
        from src.providers.llm.ollama_provider import OllamaLLMProvider

        with patch("src.providers.llm.ollama_provider.openai.AsyncOpenAI") as client_cls:
            OllamaLLMProvider(_settings(ollama_base_url="http://ollama:11434/"))

        assert client_cls.call_args.kwargs["base_url"] == "http://ollama:11434/v1"

    @pytest.mark.asyncio
    async def test_complete_success(self) -> None:
        from src.providers.llm.ollama_provider import OllamaLLMProvider

        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="Local answer"))]
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch("src.providers.llm.ollama_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OllamaLLMProvider(_settings())
            result = await provider.complete("system", _MESSAGES)

        assert result == "Local answer"
        assert mock_client.chat.completions.create.call_args.kwargs["model"] == "llama3.1"


# ======================================================================
# SDK error translation
# ======================================================================


class TestErrorTranslation:
    @pytest.mark.parametrize("status", [500, 503, 529])
    def test_anthropic_server_statuses_are_transient(self, status: int) -> None:
        import anthropic

        from src.providers.errors import translate_anthropic_error

        exc = anthropic.APIStatusError(
            message="unavailable", response=httpx.Response(status, request=_request()), body=None
        )

        assert isinstance(translate_anthropic_error(exc, "anthropic"), TransientProviderError)

    def test_anthropic_overloaded_error_is_transient(self) -> None:
        import anthropic

        from src.providers.errors import translate_anthropic_error

        exc = anthropic.OverloadedError(
            message="Overloaded", response=httpx.Response(529, request=_request()), body=None
        )

        error = translate_anthropic_error(exc, "anthropic")

        assert isinstance(error, TransientProviderError)
        assert error.provider_name == "anthropic"

    def test_anthropic_bad_request_is_permanent(self) -> None:
        import anthropic

        from src.providers.errors import translate_anthropic_error

        exc = anthropic.BadRequestError(
            message="bad", response=httpx.Response(400, request=_request()), body=None
        )

        error = translate_anthropic_error(exc, "anthropic")

        assert isinstance(error, ProviderError)
        assert not isinstance(error, TransientProviderError)

    @pytest.mark.parametrize(("status", "transient"), [(502, True), (503, True), (404, False)])
    def test_openai_status_errors(self, status: int, transient: bool) -> None:
        import openai

        from src.providers.errors import translate_openai_error

        exc = openai.APIStatusError(
            message="upstream", response=httpx.Response(status, request=_request()), body=None
        )

        assert isinstance(translate_openai_error(exc, "openai"), TransientProviderError) is transient
