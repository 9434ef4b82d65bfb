"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources (in priority order):

  1. **Environment variables** -- e.g. ``OPENAI_API_KEY=sk-abc123``
  2. **.env file** -- key=value lines in the project root ``.env`` file

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults are
used when neither source sets a value.

The chunking and retrieval knobs (``chunk_target_size``, ``chunk_overlap``,
``rag_top_k``, ``rag_min_score``) are deployment configuration; chatbots can
override the retrieval pair per chatbot.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Groundbot application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM Providers ===
    # Empty string = "not configured"; the provider registry in main.py
    # skips providers with empty keys.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    anthropic_api_key: str = ""
    anthropic_chat_model: str = "claude-sonnet-4-20250514"
    ollama_base_url: str = ""
    ollama_chat_model: str = "llama3.1"
    ollama_embedding_model: str = "nomic-embed-text"
    default_llm_provider: str = "openai"
    fallback_llm_provider: str = ""
    embedding_provider: str = "openai"

    # === Vector store ===
    vector_store_backend: str = "chromadb"  # "chromadb" or "memory"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "groundbot_chunks"
    # Fixed per deployment; must match how the embedding model is normalized.
    similarity_metric: str = "cosine"

    # === Chunking ===
    chunk_target_size: int = 1000
    chunk_overlap: int = 100

    # === Retrieval ===
    rag_top_k: int = 5
    rag_min_score: float = 0.7

    # === Prompt budget (characters) ===
    prompt_max_chars: int = 24000
    history_max_chars: int = 6000
    generation_max_tokens: int = 1024
    generation_temperature: float = 0.2

    # === Retry / timeouts ===
    embedding_max_attempts: int = 3
    embedding_batch_concurrency: int = 4
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    embedding_timeout: float = 30.0
    generation_timeout: float = 60.0
    vector_store_timeout: float = 15.0
    storage_timeout: float = 15.0

    # === Persistence ===
    metadata_db_path: str = "data/groundbot.db"
    blob_storage_dir: str = "data/blobs"
    max_upload_bytes: int = 20 * 1024 * 1024

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM provider names that have credentials or endpoints configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers
