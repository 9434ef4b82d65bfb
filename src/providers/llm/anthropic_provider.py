"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`
via the Claude Messages API.

Key differences from the OpenAI adapter:
    - System prompt is a separate parameter, not a message in the list
    - Response content is a list of blocks, so we filter for text blocks
      and join them
    - Streaming yields typed events; only ``content_block_delta`` events
      with a ``text_delta`` carry response text
"""

from __future__ import annotations

from typing import AsyncIterator

# The official Anthropic Python SDK (async version).
import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.models.conversation import ChatMessage
from src.providers.errors import translate_anthropic_error
from src.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


def _to_anthropic_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert history to Messages API format.

    The API rejects consecutive messages with the same role, so adjacent
    same-role messages are merged.
    """
    merged: list[dict[str, str]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message.role:
            merged[-1]["content"] += "\n\n" + message.content
        else:
            merged.append({"role": message.role, "content": message.content})
    return merged


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Claude API.

    Uses ``claude-sonnet-4-20250514`` by default.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        # API key from ANTHROPIC_API_KEY env var.
        self._api_key = settings.anthropic_api_key
        # AsyncAnthropic is the async client -- all calls return coroutines.
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=settings.generation_timeout,
            max_retries=0,
        )
        self._model = settings.anthropic_chat_model or "claude-sonnet-4-20250514"

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
        """Generate a response via the Anthropic Messages API."""
        model_name = model or self._model
        try:
            response = await self._client.messages.create(
                model=model_name,
                max_tokens=max_tokens,
                # Anthropic takes system prompt as a separate kwarg, not a message.
                system=system_prompt,
                messages=_to_anthropic_messages(messages),
                temperature=temperature,
            )
        except anthropic.AnthropicError as exc:
            raise translate_anthropic_error(exc, self.get_provider_name()) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks or not "".join(text_blocks).strip():
            raise ProviderError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "anthropic_completion",
            model=model_name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "".join(text_blocks)

    async def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        """Yield response deltas from a ``stream=True`` Messages API call."""
        model_name = model or self._model
        try:
            events = await self._client.messages.create(
                model=model_name,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=_to_anthropic_messages(messages),
                temperature=temperature,
                stream=True,
            )
            async with events:
                async for event in events:
                    if event.type == "content_block_delta" and event.delta.type == "text_delta":
                        if event.delta.text:
                            yield event.delta.text
        except anthropic.AnthropicError as exc:
            raise translate_anthropic_error(exc, self.get_provider_name()) from exc
        logger.info("anthropic_stream_complete", model=model_name)

    def get_default_model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "anthropic"
