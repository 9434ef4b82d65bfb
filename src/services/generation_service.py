"""Generation orchestrator -- turns a prompt into an answer with fallback.

Providers are looked up by name in a registry built at startup (see
:mod:`src.main`), so switching a chatbot from OpenAI to Anthropic is a
configuration change, not a code change.

Policy for one turn:

1. The chatbot's provider (or the deployment default when it is not
   configured) gets the call, with one retry on transient failure.
2. If it still fails, the fallback provider gets the same prompt with one
   retry of its own.
3. Otherwise the turn fails with
   :class:`~src.utils.errors.GenerationUnavailable`.

Every attempt is bounded by ``timeout``.  Streaming follows the same
policy until the first delta arrives; once text has been yielded the
answer is never switched to another provider mid-way -- a later failure
ends the stream with ``GenerationUnavailable``.
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from typing import AsyncIterator

import structlog

from src.interfaces.llm_provider import ILLMProvider
from src.models.chatbot import ChatbotConfig
from src.models.conversation import ChatMessage, GenerationResult
from src.models.rag import ContextPassage
from src.services.prompt_builder import BuiltPrompt, PromptBuilder
from src.utils.errors import (
    GenerationUnavailable,
    ProviderError,
    TransientProviderError,
)
from src.utils.retry import call_with_retry

logger = structlog.get_logger(logger_name=__name__)

# First attempt plus one retry per provider.
_ATTEMPTS_PER_PROVIDER = 2


class GenerationService:
    """Runs chat generation against the provider registry.

    Parameters
    ----------
    providers:
        Registry of configured providers keyed by name.
    prompt_builder:
        Shared prompt assembly.
    default_provider:
        Used when a chatbot names a provider that is not configured.
    fallback_provider:
        Deployment-wide fallback; a chatbot's own fallback wins.
    preference:
        Provider order tried when neither the chatbot's nor the default
        provider is configured.
    """

    def __init__(
        self,
        providers: dict[str, ILLMProvider],
        prompt_builder: PromptBuilder,
        default_provider: str = "openai",
        fallback_provider: str | None = None,
        preference: list[str] | None = None,
        timeout: float | None = 60.0,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ) -> None:
        self._providers = dict(providers)
        self._builder = prompt_builder
        self._default_provider = default_provider
        self._fallback_provider = fallback_provider or None
        self._preference = list(preference or [])
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def provider_names(self) -> list[str]:
        return sorted(self._providers)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        config: ChatbotConfig,
        history: list[ChatMessage],
        user_message: str,
        context_passages: list[ContextPassage],
        language: str,
    ) -> GenerationResult:
        """Generate a complete answer.

        Raises
        ------
        GenerationUnavailable
            If every provider in the chain failed.
        ValidationError
            If the user message cannot fit in the prompt budget.
        """
        start = time.monotonic()
        prompt = self._builder.build(config, history, user_message, context_passages, language)
        chain = self._provider_chain(config)

        last_error: Exception | None = None
        for provider, model in chain:
            name = provider.get_provider_name()
            try:
                text = await call_with_retry(
                    partial(
                        provider.complete,
                        prompt.system_prompt,
                        prompt.messages,
                        model=model,
                        temperature=self._temperature,
                        max_tokens=self._max_tokens,
                    ),
                    operation="generate",
                    provider_name=name,
                    max_attempts=_ATTEMPTS_PER_PROVIDER,
                    timeout=self._timeout,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                )
            except (TransientProviderError, ProviderError) as exc:
                last_error = exc
                logger.warning(
                    "generation_provider_failed",
                    provider=name,
                    error_type=type(exc).__name__,
                )
                continue
            return self._result(prompt, text, provider, model, start)

        raise self._unavailable(chain, last_error)

    async def stream(
        self,
        config: ChatbotConfig,
        history: list[ChatMessage],
        user_message: str,
        context_passages: list[ContextPassage],
        language: str,
    ) -> AsyncIterator[str | GenerationResult]:
        """Yield text deltas, then one final :class:`GenerationResult`.

        The concatenated deltas equal ``result.response_text``.
        """
        start = time.monotonic()
        prompt = self._builder.build(config, history, user_message, context_passages, language)
        chain = self._provider_chain(config)

        last_error: Exception | None = None
        for provider, model in chain:
            name = provider.get_provider_name()
            try:
                deltas, first = await call_with_retry(
                    partial(
                        self._open_stream,
                        provider,
                        prompt,
                        model,
                        self._temperature,
                        self._max_tokens,
                    ),
                    operation="generate_stream",
                    provider_name=name,
                    max_attempts=_ATTEMPTS_PER_PROVIDER,
                    timeout=self._timeout,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                )
            except (TransientProviderError, ProviderError) as exc:
                last_error = exc
                logger.warning(
                    "generation_provider_failed",
                    provider=name,
                    error_type=type(exc).__name__,
                    streaming=True,
                )
                continue

            parts = [first]
            try:
                yield first
                while True:
                    try:
                        delta = await asyncio.wait_for(deltas.__anext__(), timeout=self._timeout)
                    except StopAsyncIteration:
                        break
                    parts.append(delta)
                    yield delta
            except (TransientProviderError, ProviderError, asyncio.TimeoutError) as exc:
                logger.error(
                    "generation_stream_interrupted",
                    provider=name,
                    error_type=type(exc).__name__,
                    deltas=len(parts),
                )
                raise GenerationUnavailable(
                    message="The answer was interrupted before it completed",
                    provider_name=name,
                ) from exc
            finally:
                await deltas.aclose()

            yield self._result(prompt, "".join(parts), provider, model, start)
            return

        raise self._unavailable(chain, last_error)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _provider_chain(self, config: ChatbotConfig) -> list[tuple[ILLMProvider, str | None]]:
        """Return ``(provider, model override)`` pairs in the order they are tried."""
        chain: list[tuple[ILLMProvider, str | None]] = []

        primary = self._available(config.provider)
        model = config.model
        if primary is None:
            candidates = [self._default_provider, *self._preference, *sorted(self._providers)]
            primary = next((p for p in map(self._available, candidates) if p is not None), None)
            # A model name only makes sense for the provider it was chosen for.
            model = None
            logger.warning(
                "chatbot_provider_unavailable",
                requested=config.provider,
                substitute=primary.get_provider_name() if primary else None,
            )
        if primary is not None:
            chain.append((primary, model))

        fallback = self._available(config.fallback_provider or self._fallback_provider)
        if fallback is not None and fallback is not primary:
            chain.append((fallback, None))
        return chain

    def _available(self, name: str | None) -> ILLMProvider | None:
        if not name:
            return None
        provider = self._providers.get(name)
        if provider is None or not provider.is_available():
            return None
        return provider

    @staticmethod
    async def _open_stream(
        provider: ILLMProvider,
        prompt: BuiltPrompt,
        model: str | None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> tuple[AsyncIterator[str], str]:
        """Start a provider stream and wait for its first delta."""
        deltas = provider.stream(
            prompt.system_prompt,
            prompt.messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        try:
            first = await deltas.__anext__()
        except StopAsyncIteration:
            await deltas.aclose()
            raise ProviderError(
                message="Provider stream ended without any text",
                provider_name=provider.get_provider_name(),
            ) from None
        except BaseException:
            await deltas.aclose()
            raise
        return deltas, first

    def _result(
        self,
        prompt: BuiltPrompt,
        text: str,
        provider: ILLMProvider,
        model: str | None,
        start: float,
    ) -> GenerationResult:
        name = provider.get_provider_name()
        model_used = model or provider.get_default_model()
        latency = time.monotonic() - start
        logger.info(
            "generation_complete",
            provider=name,
            model=model_used,
            used_context=prompt.used_context,
            passages=len(prompt.passages),
            response_chars=len(text),
            latency_s=round(latency, 2),
        )
        return GenerationResult(
            response_text=text,
            used_context=prompt.used_context,
            model_used=model_used,
            latency=latency,
            provider=name,
            passages_used=len(prompt.passages),
        )

    @staticmethod
    def _unavailable(
        chain: list[tuple[ILLMProvider, str | None]],
        last_error: Exception | None,
    ) -> GenerationUnavailable:
        if not chain:
            return GenerationUnavailable(message="No language model provider is configured")
        tried = ", ".join(p.get_provider_name() for p, _ in chain)
        error = GenerationUnavailable(message=f"No answer from providers: {tried}")
        error.__cause__ = last_error
        logger.error("generation_unavailable", providers=tried)
        return error
