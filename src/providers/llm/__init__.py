"""LLM provider adapters.

Three concrete implementations of ILLMProvider (src/interfaces/llm_provider.py):
    - OpenAILLMProvider    -- gpt-4o-mini (also supports OpenAI-compatible APIs)
    - AnthropicLLMProvider -- Claude Sonnet
    - OllamaLLMProvider    -- local models via Ollama server (llama3.1)

At startup, main.py registers every provider whose API key or URL is
configured; each chatbot picks one by name from that registry.
"""

from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider", "AnthropicLLMProvider", "OllamaLLMProvider"]
