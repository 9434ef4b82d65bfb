"""Conversation models: chat history, generation results and the turn log."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One prior message in a conversation, as supplied by the caller."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class GenerationResult(BaseModel):
    """Outcome of one generation call.

    Streaming and non-streaming generation produce equal results for the
    same provider output.
    """

    model_config = ConfigDict(frozen=True)

    response_text: str
    used_context: bool
    model_used: str
    # Seconds, wall clock, including retries and fallback.
    latency: float = Field(ge=0.0)
    provider: str = ""
    passages_used: int = Field(default=0, ge=0)


class SourceReference(BaseModel):
    """Provenance of a passage that was placed in the prompt."""

    model_config = ConfigDict(frozen=True)

    marker: str
    document_id: str
    filename: str
    page_number: int | None = None
    score: float


class ChatTurnResponse(BaseModel):
    """Response returned by the inbound chat boundary for one turn."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    chatbot_id: str
    response: str
    language: str
    used_context: bool
    model_used: str
    latency: float = Field(ge=0.0)
    sources: list[SourceReference] = Field(default_factory=list)


class StreamEvent(BaseModel):
    """One event of a streamed chat turn.

    A stream is zero or more ``delta`` events followed by exactly one
    ``done`` event carrying the full :class:`ChatTurnResponse`, or an
    ``error`` event.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["delta", "done", "error"]
    text: str = ""
    response: ChatTurnResponse | None = None
    error: str | None = None


class ConversationTurn(BaseModel):
    """Append-only log record of a completed chat turn."""

    model_config = ConfigDict(frozen=True)

    turn_id: str
    session_id: str
    chatbot_id: str
    user_message: str
    bot_response: str
    language: str
    used_context: bool
    model_used: str
    latency: float = Field(ge=0.0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
