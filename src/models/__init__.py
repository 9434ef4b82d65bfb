"""Groundbot domain models -- re-exports all public model classes.

Other parts of the codebase can import directly from ``src.models``
(e.g. ``from src.models import Document``) instead of the submodule.

The models are organized across four submodules by domain concern:
    - chatbot.py       -- Chatbot and its per-chatbot configuration
    - conversation.py  -- Chat history, generation results, turn log, stream events
    - document.py      -- Documents, status state machine, extracted text, chunks
    - rag.py           -- Chunk spans, vector records, retrieval scope and results
"""

from __future__ import annotations

# --- Chatbot models ---
from src.models.chatbot import Chatbot, ChatbotConfig

# --- Conversation models: what a chat turn consumes and produces. ---
from src.models.conversation import (
    ChatMessage,
    ChatTurnResponse,
    ConversationTurn,
    GenerationResult,
    SourceReference,
    StreamEvent,
)

# --- Document models: the ingestion state machine and its products. ---
from src.models.document import (
    Document,
    DocumentChunk,
    DocumentStatus,
    ExtractedText,
    can_transition,
)

# --- RAG models: vector store rows, scope and retrieval results. ---
from src.models.rag import (
    ChatbotScope,
    ChunkSpan,
    ContextPassage,
    IngestionResult,
    MigrationResult,
    SearchHit,
    VectorRecord,
)

__all__ = [
    "ChatMessage",
    "ChatTurnResponse",
    "Chatbot",
    "ChatbotConfig",
    "ChatbotScope",
    "ChunkSpan",
    "ContextPassage",
    "ConversationTurn",
    "Document",
    "DocumentChunk",
    "DocumentStatus",
    "ExtractedText",
    "GenerationResult",
    "IngestionResult",
    "MigrationResult",
    "SearchHit",
    "SourceReference",
    "StreamEvent",
    "VectorRecord",
    "can_transition",
]
