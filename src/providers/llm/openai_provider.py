"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When a custom ``openai_base_url`` is configured (e.g. TogetherAI,
Fireworks, Groq), the client points at that URL instead of the default
OpenAI endpoint, so this single adapter can talk to many model providers.
"""

from __future__ import annotations

from typing import AsyncIterator

# The official OpenAI Python SDK (async version).
import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.models.conversation import ChatMessage
from src.providers.errors import translate_openai_error
from src.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


def _to_openai_messages(system_prompt: str, messages: list[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": "system", "content": system_prompt}] + [
        {"role": m.role, "content": m.content} for m in messages
    ]


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o-mini`` by default.  SDK-level retries are disabled
    (``max_retries=0``) because the generation orchestrator owns the
    retry and fallback policy.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        # API key loaded from OPENAI_API_KEY env var via Pydantic Settings.
        self._api_key = settings.openai_api_key

        # Build client kwargs -- add base_url only when a custom endpoint is
        # configured.
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.generation_timeout, connect=5.0),
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_chat_model or "gpt-4o-mini"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a response via the chat completions API."""
        model_name = model or self._model
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=_to_openai_messages(system_prompt, messages),
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as exc:
            # "from exc" preserves the original stack trace for debugging.
            raise translate_openai_error(exc, self.get_provider_name()) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(
                message="OpenAI returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=model_name,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    async def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        """Yield response deltas via ``stream=True`` chat completions."""
        model_name = model or self._model
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=_to_openai_messages(system_prompt, messages),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            # The stream holds an HTTP connection; ``async with`` releases it
            # even when the consumer stops iterating early.
            async with response:
                async for chunk in response:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content
                    if delta:
                        yield delta
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc
        logger.info("openai_stream_complete", model=model_name)

    def get_default_model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "openai"
