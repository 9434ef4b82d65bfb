"""Embedding provider implementations.

Embeddings convert text into numeric vectors that capture semantic meaning.
These vectors are stored in the vector store and used for similarity search.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider  -- text-embedding-3-small (1536 dims).
       Requires an API key; also serves OpenAI-compatible endpoints.
    2. OllamaEmbeddingProvider  -- nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
"""

from src.providers.embedding.ollama_embedding_provider import OllamaEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OllamaEmbeddingProvider", "OpenAIEmbeddingProvider"]
