"""Chatbot-scoped semantic retrieval.

For one chat turn the engine:

1. loads the chatbot and resolves its authorized documents that are READY,
   pinned to the current embedding version;
2. embeds the query through the embedding client;
3. searches the vector store inside that scope only;
4. discards results below ``min_score`` and truncates to ``top_k``;
5. returns ranked :class:`~src.models.rag.ContextPassage` objects carrying
   the provenance needed for citation markers.

``top_k`` and ``min_score`` resolve in order: explicit argument, chatbot
override, deployment setting.
"""

from __future__ import annotations

import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.chatbot import Chatbot
from src.models.rag import ChatbotScope, ContextPassage, SearchHit
from src.services.embedding_client import EmbeddingClient
from src.services.vector_store_adapter import VectorStoreAdapter
from src.utils.errors import NotFoundError, ValidationError

logger = structlog.get_logger(logger_name=__name__)


class RetrievalService:
    """Retrieves context passages for a chatbot's query."""

    def __init__(
        self,
        metadata_store: IMetadataStore,
        embedding_client: EmbeddingClient,
        vector_store: VectorStoreAdapter,
        default_top_k: int = 5,
        default_min_score: float = 0.7,
    ) -> None:
        self._store = metadata_store
        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._default_top_k = default_top_k
        self._default_min_score = default_min_score

    async def build_scope(self, chatbot: Chatbot) -> ChatbotScope:
        """Return the chatbot's retrieval boundary at the current embedding version."""
        ready_ids = await self._store.get_ready_document_ids(chatbot.chatbot_id)
        return ChatbotScope(
            company_id=chatbot.company_id,
            chatbot_id=chatbot.chatbot_id,
            document_ids=frozenset(ready_ids),
            embedding_version=self._embedding_client.embedding_version,
        )

    async def retrieve(
        self,
        chatbot_id: str,
        query_text: str,
        language: str | None = None,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[ContextPassage]:
        """Return up to ``top_k`` passages scoring at least ``min_score``.

        *language* is the reply language of the turn.  Search is
        cross-lingual, so it is only recorded in the log.

        Raises
        ------
        NotFoundError
            If the chatbot does not exist.
        ValidationError
            If *query_text* is empty or ``top_k`` is not positive.
        EmbeddingUnavailable, VectorStoreError
            If the query cannot be embedded or searched; chat turns degrade
            to an answer without context.
        """
        if not query_text or not query_text.strip():
            raise ValidationError(message="Query text is empty")

        chatbot = await self._store.get_chatbot(chatbot_id)
        if chatbot is None:
            raise NotFoundError(message=f"Chatbot {chatbot_id} not found")

        k = top_k or chatbot.config.top_k or self._default_top_k
        if k <= 0:
            raise ValidationError(message=f"top_k must be positive, got {k}")
        threshold = self._resolve_min_score(chatbot, min_score)

        scope = await self.build_scope(chatbot)
        if scope.is_empty:
            logger.info("retrieval_empty_scope", chatbot_id=chatbot_id)
            return []

        query_vector = await self._embedding_client.embed_query(query_text)
        hits = await self._vector_store.search(
            chatbot.company_id,
            scope,
            query_vector,
            top_k=k,
        )

        kept = [hit for hit in hits if hit.score >= threshold][:k]
        passages = [self._to_passage(rank, hit) for rank, hit in enumerate(kept, start=1)]

        logger.info(
            "retrieval_complete",
            chatbot_id=chatbot_id,
            language=language,
            documents=len(scope.document_ids),
            candidates=len(hits),
            passages=len(passages),
            top_k=k,
            min_score=threshold,
        )
        return passages

    def _resolve_min_score(self, chatbot: Chatbot, min_score: float | None) -> float:
        if min_score is not None:
            return min_score
        if chatbot.config.min_score is not None:
            return chatbot.config.min_score
        return self._default_min_score

    @staticmethod
    def _to_passage(rank: int, hit: SearchHit) -> ContextPassage:
        page = hit.metadata.get("page_number")
        return ContextPassage(
            rank=rank,
            chunk_id=hit.chunk_id,
            document_id=hit.document_id,
            filename=str(hit.metadata.get("filename", "")),
            page_number=int(page) if isinstance(page, (int, float)) and not isinstance(page, bool) else None,
            text=hit.text,
            score=hit.score,
        )


def format_context(passages: list[ContextPassage]) -> str:
    """Concatenate passages, each preceded by its ``[Source n: ...]`` marker."""
    return "\n\n".join(f"{p.marker}\n{p.text}" for p in passages)
