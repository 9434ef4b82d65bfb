"""Chatbot management: configuration and the authorized document set.

A chatbot may only be associated with documents owned by its own company;
associating another company's document is a
:class:`~src.utils.errors.ScopeViolation`.  Documents can be associated
in any status -- retrieval only ever reads the READY ones.
"""

from __future__ import annotations

import uuid

import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.chatbot import Chatbot, ChatbotConfig
from src.utils.errors import NotFoundError, ScopeViolation, ValidationError
from src.utils.text_normalizer import normalize_language_code

logger = structlog.get_logger(logger_name=__name__)


class ChatbotService:
    """CRUD for chatbots plus document authorization."""

    def __init__(self, metadata_store: IMetadataStore, llm_providers: list[str] | None = None) -> None:
        self._store = metadata_store
        # Registry names accepted for ``config.provider``; empty accepts any.
        self._llm_providers = set(llm_providers or [])

    async def create_chatbot(
        self,
        company_id: str,
        name: str,
        config: ChatbotConfig | None = None,
        document_ids: list[str] | None = None,
    ) -> Chatbot:
        if not company_id.strip():
            raise ValidationError(message="company_id is required")
        if not name.strip():
            raise ValidationError(message="Chatbot name is required")
        chatbot = Chatbot(
            chatbot_id=str(uuid.uuid4()),
            company_id=company_id,
            name=name.strip(),
            config=self._validate_config(config or ChatbotConfig()),
        )
        await self._store.create_chatbot(chatbot)
        if document_ids:
            await self.set_documents(chatbot.chatbot_id, document_ids)
        logger.info(
            "chatbot_created",
            chatbot_id=chatbot.chatbot_id,
            company_id=company_id,
            documents=len(document_ids or []),
        )
        return chatbot

    async def get_chatbot(self, chatbot_id: str) -> Chatbot:
        chatbot = await self._store.get_chatbot(chatbot_id)
        if chatbot is None:
            raise NotFoundError(message=f"Chatbot {chatbot_id} not found")
        return chatbot

    async def list_chatbots(self, company_id: str) -> list[Chatbot]:
        return await self._store.list_chatbots(company_id)

    async def update_chatbot(
        self,
        chatbot_id: str,
        name: str | None = None,
        config: ChatbotConfig | None = None,
    ) -> Chatbot:
        chatbot = await self.get_chatbot(chatbot_id)
        update: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationError(message="Chatbot name is required")
            update["name"] = name.strip()
        if config is not None:
            update["config"] = self._validate_config(config)
        if not update:
            return chatbot
        updated = await self._store.update_chatbot(chatbot.model_copy(update=update))
        logger.info("chatbot_updated", chatbot_id=chatbot_id, fields=sorted(update))
        return updated

    async def delete_chatbot(self, chatbot_id: str) -> None:
        if not await self._store.delete_chatbot(chatbot_id):
            raise NotFoundError(message=f"Chatbot {chatbot_id} not found")
        logger.info("chatbot_deleted", chatbot_id=chatbot_id)

    async def set_documents(self, chatbot_id: str, document_ids: list[str]) -> list[str]:
        """Replace the chatbot's authorized documents; order is kept, duplicates dropped."""
        chatbot = await self.get_chatbot(chatbot_id)
        unique_ids = list(dict.fromkeys(document_ids))
        for document_id in unique_ids:
            document = await self._store.get_document(document_id)
            if document is None:
                raise NotFoundError(message=f"Document {document_id} not found")
            if document.company_id != chatbot.company_id:
                logger.warning(
                    "chatbot_document_scope_violation",
                    chatbot_id=chatbot_id,
                    document_id=document_id,
                )
                raise ScopeViolation(
                    message=f"Document {document_id} belongs to a different company"
                )
        await self._store.set_chatbot_documents(chatbot_id, unique_ids)
        logger.info("chatbot_documents_set", chatbot_id=chatbot_id, documents=len(unique_ids))
        return unique_ids

    async def get_documents(self, chatbot_id: str) -> list[str]:
        await self.get_chatbot(chatbot_id)
        return await self._store.get_chatbot_document_ids(chatbot_id)

    def _validate_config(self, config: ChatbotConfig) -> ChatbotConfig:
        for provider in (config.provider, config.fallback_provider):
            if provider and self._llm_providers and provider not in self._llm_providers:
                raise ValidationError(message=f"Unknown LLM provider: {provider!r}")

        languages: list[str] = []
        for value in config.supported_languages:
            code = normalize_language_code(value)
            if code is None:
                raise ValidationError(message=f"Unknown language: {value!r}")
            if code not in languages:
                languages.append(code)
        if not languages:
            raise ValidationError(message="At least one supported language is required")

        default = normalize_language_code(config.default_language)
        if default is None:
            raise ValidationError(message=f"Unknown language: {config.default_language!r}")
        if default not in languages:
            raise ValidationError(message="default_language must be one of supported_languages")

        return config.model_copy(update={"supported_languages": languages, "default_language": default})
