"""WebSocket endpoint for streamed chat answers.

The client opens one connection per conversation and sends one JSON
message per turn:

    {"message": "...", "session_id": "...", "language": "de", "history": [...]}

The server answers each turn with a sequence of JSON events, the
serialized :class:`~src.models.conversation.StreamEvent`:

    {"type": "delta", "text": "Our opening"}
    {"type": "delta", "text": " hours are ..."}
    {"type": "done", "response": {...ChatTurnResponse...}}

A turn that cannot start (unknown chatbot, empty message) or whose
generation fails produces a single ``error`` event; the connection stays
open for the next turn.  When the client disconnects mid-answer the turn's
stream generator is closed, which closes the provider stream.
"""

from __future__ import annotations

import contextlib
import uuid

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from src.api.schemas import ChatRequest
from src.models.conversation import StreamEvent
from src.services.chat_service import ChatService
from src.utils.errors import GroundbotError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


async def websocket_chat(websocket: WebSocket, chatbot_id: str) -> None:
    """Serve streamed chat turns for *chatbot_id* until the client disconnects."""
    chat_service: ChatService = websocket.app.state.chat_service

    await websocket.accept()
    _logger.info("websocket_connected", chatbot_id=chatbot_id)
    connection_session = str(uuid.uuid4())

    try:
        while True:
            payload = await websocket.receive_json()
            try:
                request = ChatRequest.model_validate(payload)
            except PydanticValidationError as exc:
                await _send_event(
                    websocket,
                    StreamEvent(type="error", error=f"Invalid request: {exc.error_count()} error(s)"),
                )
                continue

            session_id = request.session_id or connection_session
            try:
                events = chat_service.stream_turn(
                    chatbot_id,
                    session_id,
                    request.message,
                    language=request.language,
                    history=request.history,
                )
                async with contextlib.aclosing(events):
                    async for event in events:
                        await _send_event(websocket, event)
            except GroundbotError as exc:
                _logger.warning(
                    "websocket_turn_failed",
                    chatbot_id=chatbot_id,
                    error_type=type(exc).__name__,
                )
                await _send_event(websocket, StreamEvent(type="error", error=exc.message))

    except WebSocketDisconnect:
        _logger.info("websocket_disconnected", chatbot_id=chatbot_id)


async def _send_event(websocket: WebSocket, event: StreamEvent) -> None:
    await websocket.send_json(event.model_dump(mode="json", exclude_none=True))
