"""Pydantic request/response schemas for the Groundbot API.

Defines the public contract for the REST endpoints: document upload and
status, re-ingestion, chatbots and their document sets, chat turns, the
conversation log, and health.

Convention: request schemas end with "Request", response schemas end with
"Response".  Domain models that are already safe to expose
(:class:`ChatTurnResponse`, :class:`MigrationResult`) are returned as-is.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.chatbot import Chatbot, ChatbotConfig
from src.models.conversation import ChatMessage, ConversationTurn
from src.models.document import Document


class DocumentResponse(BaseModel):
    """Public view of a document record (the blob location stays internal)."""

    document_id: str
    company_id: str
    filename: str
    file_type: str
    byte_size: int
    status: str
    char_length: int = 0
    chunk_count: int = 0
    embedding_version: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        return cls(
            document_id=document.document_id,
            company_id=document.company_id,
            filename=document.filename,
            file_type=document.file_type,
            byte_size=document.byte_size,
            status=document.status.value,
            char_length=document.char_length,
            chunk_count=document.chunk_count,
            embedding_version=document.embedding_version,
            error_message=document.error_message,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse] = Field(default_factory=list)


class IngestionAcceptedResponse(BaseModel):
    """Returned when an ingestion run has been scheduled."""

    document_id: str
    status: str
    message: str = "Ingestion scheduled"


class CreateChatbotRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    config: ChatbotConfig = Field(default_factory=ChatbotConfig)
    document_ids: list[str] = Field(default_factory=list)


class UpdateChatbotRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    config: ChatbotConfig | None = None


class ChatbotDocumentsRequest(BaseModel):
    document_ids: list[str] = Field(default_factory=list)


class ChatbotResponse(BaseModel):
    chatbot_id: str
    company_id: str
    name: str
    config: ChatbotConfig
    document_ids: list[str] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_chatbot(cls, chatbot: Chatbot, document_ids: list[str]) -> ChatbotResponse:
        return cls(
            chatbot_id=chatbot.chatbot_id,
            company_id=chatbot.company_id,
            name=chatbot.name,
            config=chatbot.config,
            document_ids=document_ids,
            created_at=chatbot.created_at,
        )


class ChatbotListResponse(BaseModel):
    chatbots: list[ChatbotResponse] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """One user message to a chatbot.

    ``session_id`` is generated when omitted.  When ``history`` is omitted
    the session's logged turns are used.
    """

    message: str = Field(..., min_length=1, max_length=4000)
    session_id: str | None = Field(default=None, max_length=200)
    language: str | None = Field(default=None, max_length=40)
    history: list[ChatMessage] | None = None


class TurnListResponse(BaseModel):
    session_id: str
    turns: list[ConversationTurn] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
