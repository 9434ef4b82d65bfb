"""Abstract base class for LLM service providers.

Defines the contract for any large-language-model backend used to answer
chat turns.  Implementations wrap the OpenAI API, the Anthropic API
(Claude), or a local Ollama server.  The generation orchestrator only sees
this interface, so a chatbot can switch provider through configuration.
"""

from __future__ import annotations

# ABC = Abstract Base Class -- Python's way of defining interfaces.
# abstractmethod marks methods that MUST be overridden by concrete classes.
from abc import ABC, abstractmethod
from typing import AsyncIterator

from src.models.conversation import ChatMessage


# Concrete implementations: OpenAILLMProvider, AnthropicLLMProvider, OllamaLLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the generation orchestrator.

    Providers support plain and streamed chat completion over a system
    prompt plus an ordered list of user/assistant messages.  The last
    message is always the current user turn.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a complete response.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        messages:
            Conversation so far, oldest first, ending with the user turn.
        model:
            Model override; the provider's default model when ``None``.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Raises
        ------
        src.utils.errors.TransientProviderError
            Rate limits, timeouts and connection failures.
        src.utils.errors.ProviderError
            Any other API failure, or an empty response.
        """

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        """Stream the response as text deltas.

        Concatenating every yielded delta gives the same text that
        :meth:`complete` would have returned.  Errors are raised from the
        iterator with the same types as :meth:`complete`.
        """

    @abstractmethod
    def get_default_model(self) -> str:
        """Return the model used when no override is given."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the registry name of this provider, e.g. ``"anthropic"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations check that credentials or an endpoint are present
        without making an inference call.
        """
