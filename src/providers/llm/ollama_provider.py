"""Ollama LLM provider adapter.

Wraps a local Ollama server via its OpenAI-compatible API endpoint, using
the ``openai`` client library pointed at the Ollama base URL.  This lets a
chatbot run completely offline with no API costs.

Setup: Install Ollama (https://ollama.ai), then ``ollama pull llama3.1``.
Set OLLAMA_BASE_URL=http://localhost:11434
"""

from __future__ import annotations

from typing import AsyncIterator

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.models.conversation import ChatMessage
from src.providers.errors import translate_openai_error
from src.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server.

    Ollama exposes an OpenAI-compatible ``/v1`` API, so this adapter
    reuses the ``openai.AsyncOpenAI`` client pointed at the local URL.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        # OLLAMA_BASE_URL env var, typically "http://localhost:11434".
        self._base_url = settings.ollama_base_url
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url.rstrip('/')}/v1",
            # Ollama doesn't require an API key, but the openai SDK requires
            # the parameter to be non-empty.
            api_key="ollama",
            timeout=settings.generation_timeout,
            max_retries=0,
        )
        self._model = settings.ollama_chat_model or "llama3.1"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    def _build_messages(
        self, system_prompt: str, messages: list[ChatMessage]
    ) -> list[dict[str, str]]:
        return [{"role": "system", "content": system_prompt}] + [
            {"role": m.role, "content": m.content} for m in messages
        ]

    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        model_name = model or self._model
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=self._build_messages(system_prompt, messages),
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(
                message="Ollama returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info("ollama_completion", model=model_name)
        return content

    async def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        model_name = model or self._model
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=self._build_messages(system_prompt, messages),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            async with response:
                async for chunk in response:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield chunk.choices[0].delta.content
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

    def get_default_model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        """Return ``True`` if an Ollama base URL is configured."""
        return bool(self._base_url)

    def get_provider_name(self) -> str:
        return "ollama"
