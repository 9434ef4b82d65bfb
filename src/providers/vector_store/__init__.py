"""Vector store provider implementations.

Two implementations of IVectorStoreProvider:
    - ChromaDBProvider     -- persistent local ChromaDB collection (default)
    - InMemoryVectorStore  -- numpy brute-force search, nothing persisted
"""

from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.providers.vector_store.memory_provider import InMemoryVectorStore

__all__ = ["ChromaDBProvider", "InMemoryVectorStore"]
