"""Inbound chat boundary: one user message in, one grounded answer out.

A turn runs in four steps:

1. **Language** -- pick the reply language from the caller's request, the
   detected language of the message, and the chatbot's supported set.
2. **Retrieve** -- fetch context passages for the chatbot.  Retrieval
   failures (embedding or vector store down) degrade to an answer without
   context instead of failing the turn.
3. **Generate** -- run the generation orchestrator.  A generation failure
   fails the turn.
4. **Log** -- append the completed turn to the conversation log.  Failed
   turns are never logged.

When the caller does not pass ``history``, the session's previous turns
are loaded from the log.
"""

from __future__ import annotations

import time
import uuid
from typing import AsyncIterator

import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.chatbot import Chatbot
from src.models.conversation import (
    ChatMessage,
    ChatTurnResponse,
    ConversationTurn,
    GenerationResult,
    SourceReference,
    StreamEvent,
)
from src.models.rag import ContextPassage
from src.services.generation_service import GenerationService
from src.services.retrieval_service import RetrievalService
from src.utils.errors import (
    DimensionMismatchError,
    EmbeddingUnavailable,
    GenerationUnavailable,
    NotFoundError,
    StorageError,
    ValidationError,
    VectorStoreError,
)
from src.utils.text_normalizer import resolve_reply_language

logger = structlog.get_logger(logger_name=__name__)

# Errors that make a turn fall back to an answer without retrieved context.
_RETRIEVAL_DEGRADE_ERRORS = (
    EmbeddingUnavailable,
    VectorStoreError,
    DimensionMismatchError,
    StorageError,
)


class ChatService:
    """Handles chat turns for every chatbot.

    Parameters
    ----------
    metadata_store:
        Chatbots and the conversation log.
    retrieval:
        Scoped passage retrieval.
    generation:
        Provider registry with retry and fallback.
    max_message_chars:
        Longest accepted user message.
    history_turns:
        Previous turns loaded from the log when no history is supplied.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        retrieval: RetrievalService,
        generation: GenerationService,
        max_message_chars: int = 4000,
        history_turns: int = 10,
    ) -> None:
        self._store = metadata_store
        self._retrieval = retrieval
        self._generation = generation
        self._max_message_chars = max_message_chars
        self._history_turns = history_turns

    async def handle_turn(
        self,
        chatbot_id: str,
        session_id: str,
        message: str,
        language: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> ChatTurnResponse:
        """Answer one message and log the turn.

        Raises
        ------
        NotFoundError
            Unknown chatbot.
        ValidationError
            Empty or oversized message.
        GenerationUnavailable
            No provider produced an answer.
        """
        chatbot, reply_language, turn_history = await self._prepare(
            chatbot_id, session_id, message, language, history
        )
        passages = await self._retrieve(chatbot, message, reply_language)
        result = await self._generation.generate(
            chatbot.config, turn_history, message, passages, reply_language
        )
        response = self._build_response(session_id, chatbot, reply_language, result, passages)
        await self._record(session_id, chatbot, message, reply_language, result)
        return response

    async def stream_turn(
        self,
        chatbot_id: str,
        session_id: str,
        message: str,
        language: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one answer as ``delta`` events followed by ``done``.

        Validation and lookup errors raise before the first event.  A
        generation failure ends the stream with an ``error`` event and the
        turn is not logged.
        """
        chatbot, reply_language, turn_history = await self._prepare(
            chatbot_id, session_id, message, language, history
        )
        passages = await self._retrieve(chatbot, message, reply_language)

        result: GenerationResult | None = None
        try:
            async for item in self._generation.stream(
                chatbot.config, turn_history, message, passages, reply_language
            ):
                if isinstance(item, GenerationResult):
                    result = item
                else:
                    yield StreamEvent(type="delta", text=item)
        except GenerationUnavailable as exc:
            yield StreamEvent(type="error", error=exc.message)
            return

        if result is None:
            yield StreamEvent(type="error", error="Generation produced no result")
            return

        response = self._build_response(session_id, chatbot, reply_language, result, passages)
        await self._record(session_id, chatbot, message, reply_language, result)
        yield StreamEvent(type="done", response=response)

    async def session_history(
        self, session_id: str, chatbot_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Return the chatbot's logged turns in a session as alternating user/assistant messages."""
        turns = await self._store.list_turns(
            session_id, chatbot_id=chatbot_id, limit=limit or self._history_turns
        )
        messages: list[ChatMessage] = []
        for turn in turns:
            messages.append(ChatMessage(role="user", content=turn.user_message))
            messages.append(ChatMessage(role="assistant", content=turn.bot_response))
        return messages

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _prepare(
        self,
        chatbot_id: str,
        session_id: str,
        message: str,
        language: str | None,
        history: list[ChatMessage] | None,
    ) -> tuple[Chatbot, str, list[ChatMessage]]:
        if not session_id or not session_id.strip():
            raise ValidationError(message="session_id is required")
        if not message or not message.strip():
            raise ValidationError(message="Message is empty")
        if len(message) > self._max_message_chars:
            raise ValidationError(
                message=f"Message exceeds {self._max_message_chars} characters"
            )

        chatbot = await self._store.get_chatbot(chatbot_id)
        if chatbot is None:
            raise NotFoundError(message=f"Chatbot {chatbot_id} not found")

        reply_language = resolve_reply_language(
            language,
            message,
            chatbot.config.supported_languages,
            chatbot.config.default_language,
        )
        if history is None:
            history = await self.session_history(session_id, chatbot.chatbot_id)

        return chatbot, reply_language, history

    async def _retrieve(
        self,
        chatbot: Chatbot,
        message: str,
        language: str,
    ) -> list[ContextPassage]:
        try:
            return await self._retrieval.retrieve(chatbot.chatbot_id, message, language)
        except _RETRIEVAL_DEGRADE_ERRORS as exc:
            logger.warning(
                "retrieval_degraded",
                chatbot_id=chatbot.chatbot_id,
                error_type=type(exc).__name__,
                provider=exc.provider_name,
            )
            return []

    @staticmethod
    def _build_response(
        session_id: str,
        chatbot: Chatbot,
        language: str,
        result: GenerationResult,
        passages: list[ContextPassage],
    ) -> ChatTurnResponse:
        used = sorted(passages, key=lambda p: p.rank)[: result.passages_used]
        return ChatTurnResponse(
            session_id=session_id,
            chatbot_id=chatbot.chatbot_id,
            response=result.response_text,
            language=language,
            used_context=result.used_context,
            model_used=result.model_used,
            latency=result.latency,
            sources=[
                SourceReference(
                    marker=p.marker,
                    document_id=p.document_id,
                    filename=p.filename,
                    page_number=p.page_number,
                    score=p.score,
                )
                for p in used
            ],
        )

    async def _record(
        self,
        session_id: str,
        chatbot: Chatbot,
        message: str,
        language: str,
        result: GenerationResult,
    ) -> None:
        turn = ConversationTurn(
            turn_id=str(uuid.uuid4()),
            session_id=session_id,
            chatbot_id=chatbot.chatbot_id,
            user_message=message,
            bot_response=result.response_text,
            language=language,
            used_context=result.used_context,
            model_used=result.model_used,
            latency=result.latency,
        )
        start = time.monotonic()
        try:
            await self._store.record_turn(turn)
        except StorageError as exc:
            # The answer was already produced; a logging failure must not lose it.
            logger.error(
                "turn_log_failed",
                chatbot_id=chatbot.chatbot_id,
                error_type=type(exc).__name__,
            )
            return
        logger.info(
            "chat_turn_complete",
            chatbot_id=chatbot.chatbot_id,
            language=language,
            used_context=result.used_context,
            model=result.model_used,
            latency_s=round(result.latency, 2),
            log_ms=round((time.monotonic() - start) * 1000, 1),
        )
