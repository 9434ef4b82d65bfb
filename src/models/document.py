"""Document and chunk models for the Groundbot knowledge base.

Defines Pydantic v2 models for uploaded documents, their processing status
state machine, extracted text, and the stored chunks derived from them.
All models use frozen config; state changes produce new instances via
``model_copy(update={...})`` and are persisted by the metadata store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# DocumentStatus -- the per-document ingestion state machine.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Processing status of a document.

    Ingestion advances a document through:
        PENDING -> EXTRACTING -> CHUNKING -> EMBEDDING -> STORING -> READY

    FAILED is reachable from every non-terminal state.  READY and FAILED
    documents go back to PENDING when re-ingestion is requested.
    """

    PENDING = "pending"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.READY, DocumentStatus.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self in (
            DocumentStatus.EXTRACTING,
            DocumentStatus.CHUNKING,
            DocumentStatus.EMBEDDING,
            DocumentStatus.STORING,
        )


_ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.EXTRACTING, DocumentStatus.FAILED}),
    DocumentStatus.EXTRACTING: frozenset({DocumentStatus.CHUNKING, DocumentStatus.FAILED}),
    DocumentStatus.CHUNKING: frozenset({DocumentStatus.EMBEDDING, DocumentStatus.FAILED}),
    DocumentStatus.EMBEDDING: frozenset({DocumentStatus.STORING, DocumentStatus.FAILED}),
    DocumentStatus.STORING: frozenset({DocumentStatus.READY, DocumentStatus.FAILED}),
    DocumentStatus.READY: frozenset({DocumentStatus.PENDING}),
    DocumentStatus.FAILED: frozenset({DocumentStatus.PENDING}),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return ``True`` if *current* -> *target* is a legal status transition."""
    return target in _ALLOWED_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Document -- metadata record for one uploaded file.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """An uploaded document owned by a company.

    ``chunk_count`` and ``embedding_version`` are only meaningful while the
    document is READY; a READY document always has ``chunk_count > 0``.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    company_id: str
    filename: str
    # Declared by the uploader (extension or MIME type), not sniffed.
    file_type: str
    byte_size: int = Field(default=0, ge=0)
    blob_url: str = ""
    char_length: int = Field(default=0, ge=0)
    chunk_count: int = Field(default=0, ge=0)
    status: DocumentStatus = DocumentStatus.PENDING
    embedding_version: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# ExtractedText -- output of the text extractor.
# ---------------------------------------------------------------------------
class ExtractedText(BaseModel):
    """Plain text extracted from a document file.

    ``page_starts`` holds the character offset at which each page begins
    (PDF only).  Offsets refer to ``text`` after trimming.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    page_starts: list[int] = Field(default_factory=list)

    def page_for_offset(self, offset: int) -> int | None:
        """Return the 1-based page containing *offset*, or ``None`` without pages."""
        if not self.page_starts:
            return None
        page = 0
        for idx, start in enumerate(self.page_starts):
            if start > offset:
                break
            page = idx
        return page + 1


# ---------------------------------------------------------------------------
# DocumentChunk -- the unit of embedding and retrieval.
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """An immutable chunk of a document's text.

    Chunks are replaced wholesale when the document is re-processed; they
    are never updated in place.  ``metadata`` values are scalars so every
    vector backend can store them (keys: ``language``, ``page_number``,
    ``filename``).
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    company_id: str
    position: int = Field(ge=0)
    text: str
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    embedding_version: str
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)
