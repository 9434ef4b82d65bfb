"""Abstract base class for the relational metadata store.

The metadata store owns documents, chatbots, the chatbot-to-document
association, and the append-only conversation turn log.  Document status
changes go through :meth:`IMetadataStore.transition_status`, a
compare-and-set that is the only way the ingestion pipeline moves a
document between states.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.chatbot import Chatbot
from src.models.conversation import ConversationTurn
from src.models.document import Document, DocumentStatus


# Concrete implementation: SQLiteMetadataStore (src/providers/metadata/)
class IMetadataStore(ABC):
    """Contract for document, chatbot and turn-log persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""

    # -- Documents -------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Insert a new document record."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document, or ``None`` if it does not exist."""

    @abstractmethod
    async def list_documents(
        self,
        company_id: str,
        status: DocumentStatus | None = None,
    ) -> list[Document]:
        """Return a company's documents, newest first, optionally filtered by status."""

    @abstractmethod
    async def list_documents_by_status(self, statuses: set[DocumentStatus]) -> list[Document]:
        """Return documents of every company whose status is in *statuses*."""

    @abstractmethod
    async def transition_status(
        self,
        document_id: str,
        expected: set[DocumentStatus],
        new_status: DocumentStatus,
        **fields: Any,
    ) -> Document | None:
        """Atomically move a document to *new_status* if its status is in *expected*.

        Extra keyword fields (``chunk_count``, ``char_length``,
        ``embedding_version``, ``error_message``) are written in the same
        statement.  Returns the updated document, or ``None`` when the
        current status was not in *expected* (or the document is gone).
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        """Delete the document and its chatbot associations; ``True`` if it existed."""

    # -- Chatbots --------------------------------------------------------

    @abstractmethod
    async def create_chatbot(self, chatbot: Chatbot) -> Chatbot:
        """Insert a new chatbot."""

    @abstractmethod
    async def get_chatbot(self, chatbot_id: str) -> Chatbot | None:
        """Return the chatbot, or ``None`` if it does not exist."""

    @abstractmethod
    async def list_chatbots(self, company_id: str) -> list[Chatbot]:
        """Return a company's chatbots."""

    @abstractmethod
    async def update_chatbot(self, chatbot: Chatbot) -> Chatbot:
        """Replace a chatbot's name and config."""

    @abstractmethod
    async def delete_chatbot(self, chatbot_id: str) -> bool:
        """Delete the chatbot and its document associations."""

    # -- Chatbot <-> document association --------------------------------

    @abstractmethod
    async def set_chatbot_documents(self, chatbot_id: str, document_ids: list[str]) -> None:
        """Replace the set of documents a chatbot may retrieve from."""

    @abstractmethod
    async def get_chatbot_document_ids(self, chatbot_id: str) -> list[str]:
        """Return the ids of every document associated with a chatbot."""

    @abstractmethod
    async def get_ready_document_ids(self, chatbot_id: str) -> list[str]:
        """Return associated documents that are READY, in association order."""

    # -- Conversation log ------------------------------------------------

    @abstractmethod
    async def record_turn(self, turn: ConversationTurn) -> None:
        """Append a completed turn to the conversation log."""

    @abstractmethod
    async def list_turns(
        self, session_id: str, chatbot_id: str | None = None, limit: int = 50
    ) -> list[ConversationTurn]:
        """Return a session's turns, oldest first, at most *limit* of the newest.

        With *chatbot_id* only that chatbot's turns are returned; a session
        id reused by another chatbot never contributes history.
        """
