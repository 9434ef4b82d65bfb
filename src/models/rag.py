"""RAG pipeline data models for the Groundbot knowledge base.

Defines Pydantic v2 models for chunk spans, vector records, retrieval
scope and results, and ingestion summaries.  All models use frozen config.

RAG (Retrieval-Augmented Generation) in Groundbot:

    1. INGESTION: An uploaded document is extracted to plain text and split
       into overlapping character windows (src/services/chunker.py).
    2. EMBEDDING: Each chunk is converted into a vector by the configured
       embedding provider (src/services/embedding_client.py).
    3. STORAGE: Chunks + vectors are written to the vector store, tagged
       with the owning company, document and embedding version.
    4. RETRIEVAL: A chat turn embeds the user message and searches only the
       chunks of documents the chatbot is authorized to use.
    5. GENERATION: Retrieved passages are placed in the LLM prompt with
       source markers so the answer can cite them.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# ChunkSpan -- chunker output, before any ids or vectors are attached.
# ---------------------------------------------------------------------------
class ChunkSpan(BaseModel):
    """A window of text with its character offsets in the source text."""

    model_config = ConfigDict(frozen=True)

    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)


# ---------------------------------------------------------------------------
# VectorRecord -- one row handed to the vector store adapter.
# ---------------------------------------------------------------------------
class VectorRecord(BaseModel):
    """A chunk's vector plus everything needed to filter and cite it."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    vector: list[float]
    text: str
    embedding_version: str
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# ChatbotScope -- the retrieval boundary for one chatbot.
# ---------------------------------------------------------------------------
class ChatbotScope(BaseModel):
    """The documents a chatbot may retrieve from, within one company.

    ``document_ids`` lists the chatbot's authorized documents that are
    READY; an empty scope matches nothing.
    """

    model_config = ConfigDict(frozen=True)

    company_id: str
    chatbot_id: str
    document_ids: frozenset[str] = Field(default_factory=frozenset)
    embedding_version: str | None = Field(
        default=None,
        description="When set, only chunks written at this embedding version match.",
    )

    @property
    def is_empty(self) -> bool:
        return not self.document_ids


# ---------------------------------------------------------------------------
# SearchHit -- a raw result from the vector store.
# ---------------------------------------------------------------------------
class SearchHit(BaseModel):
    """A stored chunk matched by a similarity search, with its score.

    Higher ``score`` always means more similar, whichever metric the
    deployment uses.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    text: str
    score: float
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# ContextPassage -- a ranked passage ready to be placed in a prompt.
# ---------------------------------------------------------------------------
class ContextPassage(BaseModel):
    """A retrieved passage with its rank and source provenance."""

    model_config = ConfigDict(frozen=True)

    rank: int = Field(ge=1, description="1-based rank, most similar first.")
    chunk_id: str
    document_id: str
    filename: str = ""
    page_number: int | None = None
    text: str
    score: float

    @property
    def marker(self) -> str:
        """Citation marker placed before the passage, e.g. ``[Source 1: faq.pdf, p. 3]``."""
        label = self.filename or self.document_id
        if self.page_number is not None:
            return f"[Source {self.rank}: {label}, p. {self.page_number}]"
        return f"[Source {self.rank}: {label}]"


# ---------------------------------------------------------------------------
# IngestionResult -- output of one ingestion run.
# ---------------------------------------------------------------------------
class IngestionResult(BaseModel):
    """Summary of a single document ingestion run."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: str
    chunk_count: int = Field(default=0, ge=0)
    char_length: int = Field(default=0, ge=0)
    embedding_version: str | None = None
    error_message: str | None = None
    ingestion_time: float = Field(
        default=0.0,
        ge=0.0,
        description="Wall-clock time in seconds for the ingestion run.",
    )


# ---------------------------------------------------------------------------
# MigrationResult -- output of an embedding-version migration.
# ---------------------------------------------------------------------------
class MigrationResult(BaseModel):
    """Counts from re-embedding a company's documents at a new embedding version."""

    model_config = ConfigDict(frozen=True)

    company_id: str
    embedding_version: str
    migrated: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
