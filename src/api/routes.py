"""FastAPI API routes for Groundbot.

Provides REST endpoints for document upload and lifecycle, chatbot
management, chat turns, the conversation log, and health.  Service
dependencies are resolved from ``app.state`` via FastAPI's ``Depends``
using the ``Annotated`` pattern.

Route map (all prefixed with ``/api/v1``):

    /companies/{cid}/documents                POST    Upload a document, schedule ingestion
    /companies/{cid}/documents                GET     List a company's documents
    /companies/{cid}/embeddings/migrate       POST    Re-embed stale READY documents
    /documents/{did}                          GET     Document status
    /documents/{did}/reingest                 POST    Schedule re-ingestion
    /documents/{did}                          DELETE  Delete chunks, record and file
    /companies/{cid}/chatbots                 POST    Create a chatbot
    /companies/{cid}/chatbots                 GET     List a company's chatbots
    /chatbots/{bid}                           GET     Chatbot with its document set
    /chatbots/{bid}                           PATCH   Update name / config
    /chatbots/{bid}                           DELETE  Delete a chatbot
    /chatbots/{bid}/documents                 PUT     Replace the authorized documents
    /chatbots/{bid}/chat                      POST    One chat turn
    /sessions/{sid}/turns                     GET     Conversation log of a session
    /health                                   GET     Health check + provider status

Streaming chat lives in :mod:`src.api.websocket`.  Application errors
raised here are turned into JSON by
:class:`~src.api.middleware.ErrorHandlingMiddleware`.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Form, Request, Response, UploadFile

from src.api.schemas import (
    ChatbotDocumentsRequest,
    ChatbotListResponse,
    ChatbotResponse,
    ChatRequest,
    CreateChatbotRequest,
    DocumentListResponse,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    IngestionAcceptedResponse,
    TurnListResponse,
    UpdateChatbotRequest,
)
from src.interfaces.metadata_store import IMetadataStore
from src.models.conversation import ChatTurnResponse
from src.models.document import DocumentStatus
from src.models.rag import MigrationResult
from src.services.chat_service import ChatService
from src.services.chatbot_service import ChatbotService
from src.services.ingestion_service import IngestionService
from src.utils.errors import NotFoundError, ValidationError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

# Uploads are read in 64 KB increments so oversized files are rejected
# without buffering the whole payload.
_UPLOAD_CHUNK_SIZE = 64 * 1024

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def _get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def _get_chatbot_service(request: Request) -> ChatbotService:
    return request.app.state.chatbot_service


def _get_metadata_store(request: Request) -> IMetadataStore:
    return request.app.state.metadata_store


IngestionDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
ChatDep = Annotated[ChatService, Depends(_get_chat_service)]
ChatbotDep = Annotated[ChatbotService, Depends(_get_chatbot_service)]
MetadataDep = Annotated[IMetadataStore, Depends(_get_metadata_store)]


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(_UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise ValidationError(message=f"Uploaded file exceeds {max_bytes} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post(
    "/companies/{company_id}/documents",
    response_model=DocumentResponse,
    status_code=202,
    responses=_ERROR_RESPONSES,
    summary="Upload a document and schedule its ingestion",
)
async def upload_document(
    company_id: str,
    file: UploadFile,
    request: Request,
    ingestion: IngestionDep,
    file_type: Annotated[str | None, Form()] = None,
) -> DocumentResponse:
    """Store the file, create a PENDING document and start ingestion in the background.

    The file type is taken from the ``file_type`` form field when given,
    otherwise from the filename extension, otherwise from the upload's
    content type.
    """
    filename = file.filename or "upload"
    declared = file_type
    if not declared:
        _, dot, extension = filename.rpartition(".")
        declared = extension if dot else (file.content_type or "")
    data = await _read_upload(file, request.app.state.settings.max_upload_bytes)

    document = await ingestion.create_document(company_id, filename, declared, data)
    ingestion.schedule(document.document_id)
    return DocumentResponse.from_document(document)


@router.get(
    "/companies/{company_id}/documents",
    response_model=DocumentListResponse,
    summary="List a company's documents",
)
async def list_documents(
    company_id: str,
    store: MetadataDep,
    status: DocumentStatus | None = None,
) -> DocumentListResponse:
    documents = await store.list_documents(company_id, status=status)
    return DocumentListResponse(documents=[DocumentResponse.from_document(d) for d in documents])


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses=_ERROR_RESPONSES,
    summary="Get a document and its ingestion status",
)
async def get_document(document_id: str, store: MetadataDep) -> DocumentResponse:
    document = await store.get_document(document_id)
    if document is None:
        raise NotFoundError(message=f"Document {document_id} not found")
    return DocumentResponse.from_document(document)


@router.post(
    "/documents/{document_id}/reingest",
    response_model=IngestionAcceptedResponse,
    status_code=202,
    responses=_ERROR_RESPONSES,
    summary="Re-run ingestion of a document",
)
async def reingest_document(document_id: str, ingestion: IngestionDep) -> IngestionAcceptedResponse:
    document = await ingestion.schedule_reingest(document_id)
    return IngestionAcceptedResponse(document_id=document_id, status=document.status.value)


@router.delete(
    "/documents/{document_id}",
    status_code=204,
    responses=_ERROR_RESPONSES,
    summary="Delete a document, its chunks and its file",
)
async def delete_document(document_id: str, ingestion: IngestionDep) -> Response:
    await ingestion.delete_document(document_id)
    return Response(status_code=204)


@router.post(
    "/companies/{company_id}/embeddings/migrate",
    response_model=MigrationResult,
    summary="Re-embed READY documents stored at an older embedding version",
)
async def migrate_embeddings(company_id: str, ingestion: IngestionDep) -> MigrationResult:
    return await ingestion.migrate_embeddings(company_id)


# ---------------------------------------------------------------------------
# Chatbots
# ---------------------------------------------------------------------------


@router.post(
    "/companies/{company_id}/chatbots",
    response_model=ChatbotResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Create a chatbot",
)
async def create_chatbot(
    company_id: str,
    body: CreateChatbotRequest,
    chatbots: ChatbotDep,
) -> ChatbotResponse:
    chatbot = await chatbots.create_chatbot(company_id, body.name, body.config, body.document_ids)
    return ChatbotResponse.from_chatbot(chatbot, await chatbots.get_documents(chatbot.chatbot_id))


@router.get(
    "/companies/{company_id}/chatbots",
    response_model=ChatbotListResponse,
    summary="List a company's chatbots",
)
async def list_chatbots(company_id: str, chatbots: ChatbotDep) -> ChatbotListResponse:
    items = []
    for chatbot in await chatbots.list_chatbots(company_id):
        items.append(
            ChatbotResponse.from_chatbot(chatbot, await chatbots.get_documents(chatbot.chatbot_id))
        )
    return ChatbotListResponse(chatbots=items)


@router.get(
    "/chatbots/{chatbot_id}",
    response_model=ChatbotResponse,
    responses=_ERROR_RESPONSES,
    summary="Get a chatbot",
)
async def get_chatbot(chatbot_id: str, chatbots: ChatbotDep) -> ChatbotResponse:
    chatbot = await chatbots.get_chatbot(chatbot_id)
    return ChatbotResponse.from_chatbot(chatbot, await chatbots.get_documents(chatbot_id))


@router.patch(
    "/chatbots/{chatbot_id}",
    response_model=ChatbotResponse,
    responses=_ERROR_RESPONSES,
    summary="Update a chatbot's name or configuration",
)
async def update_chatbot(
    chatbot_id: str,
    body: UpdateChatbotRequest,
    chatbots: ChatbotDep,
) -> ChatbotResponse:
    chatbot = await chatbots.update_chatbot(chatbot_id, name=body.name, config=body.config)
    return ChatbotResponse.from_chatbot(chatbot, await chatbots.get_documents(chatbot_id))


@router.delete(
    "/chatbots/{chatbot_id}",
    status_code=204,
    responses=_ERROR_RESPONSES,
    summary="Delete a chatbot",
)
async def delete_chatbot(chatbot_id: str, chatbots: ChatbotDep) -> Response:
    await chatbots.delete_chatbot(chatbot_id)
    return Response(status_code=204)


@router.put(
    "/chatbots/{chatbot_id}/documents",
    response_model=ChatbotResponse,
    responses={**_ERROR_RESPONSES, 403: {"model": ErrorResponse}},
    summary="Replace the documents a chatbot may answer from",
)
async def set_chatbot_documents(
    chatbot_id: str,
    body: ChatbotDocumentsRequest,
    chatbots: ChatbotDep,
) -> ChatbotResponse:
    document_ids = await chatbots.set_documents(chatbot_id, body.document_ids)
    return ChatbotResponse.from_chatbot(await chatbots.get_chatbot(chatbot_id), document_ids)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@router.post(
    "/chatbots/{chatbot_id}/chat",
    response_model=ChatTurnResponse,
    responses={**_ERROR_RESPONSES, 503: {"model": ErrorResponse}},
    summary="Send one message to a chatbot",
)
async def chat(chatbot_id: str, body: ChatRequest, chat_service: ChatDep) -> ChatTurnResponse:
    session_id = body.session_id or str(uuid.uuid4())
    return await chat_service.handle_turn(
        chatbot_id,
        session_id,
        body.message,
        language=body.language,
        history=body.history,
    )


@router.get(
    "/sessions/{session_id}/turns",
    response_model=TurnListResponse,
    summary="Get a session's conversation log",
)
async def list_turns(
    session_id: str, store: MetadataDep, chatbot_id: str | None = None, limit: int = 50
) -> TurnListResponse:
    if limit <= 0:
        raise ValidationError(message="limit must be positive")
    turns = await store.list_turns(session_id, chatbot_id=chatbot_id, limit=min(limit, 500))
    return TurnListResponse(session_id=session_id, turns=turns)


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability.

    ``healthy`` needs an LLM, the embedding provider and the vector
    store; without an LLM or embeddings the service is ``unhealthy``;
    a vector store problem alone is ``degraded`` because chat still
    answers without context.
    """
    providers: dict[str, Any] = {}
    if hasattr(request.app.state, "provider_registry"):
        providers = dict(request.app.state.provider_registry)

    vector_store = getattr(request.app.state, "vector_store", None)
    providers["vector_store"] = bool(vector_store is not None and vector_store.is_available())

    critical_ok = bool(providers.get("llm")) and bool(providers.get("embedding"))
    if critical_ok and providers["vector_store"]:
        status = "healthy"
    elif critical_ok:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=request.app.version,
        providers=providers,
    )
