"""Chatbot configuration models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ChatbotConfig(BaseModel):
    """Per-chatbot behaviour: model choice, languages, persona and retrieval overrides.

    ``provider`` names an entry in the LLM provider registry (``"openai"``,
    ``"anthropic"``, ``"ollama"``).  ``model`` overrides that provider's
    default model when set.  ``top_k`` and ``min_score`` fall back to the
    deployment settings when ``None``.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "openai"
    fallback_provider: str | None = None
    model: str | None = None
    supported_languages: list[str] = Field(default_factory=lambda: ["en"])
    default_language: str = "en"
    system_prompt: str = "You are a helpful assistant for our customers."
    welcome_message: str = "Hi! How can I help you today?"
    top_k: int | None = Field(default=None, ge=1, le=50)
    min_score: float | None = Field(default=None, ge=-1.0, le=1.0)


class Chatbot(BaseModel):
    """A company's chatbot.

    The set of documents a chatbot may retrieve from is an explicit
    association kept by the metadata store, not every company document.
    """

    model_config = ConfigDict(frozen=True)

    chatbot_id: str
    company_id: str
    name: str
    config: ChatbotConfig = Field(default_factory=ChatbotConfig)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
