"""Groundbot HTTP and WebSocket API."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    ChatbotResponse,
    ChatRequest,
    CreateChatbotRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
)
from src.api.websocket import websocket_chat

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "websocket_chat",
    "ChatbotResponse",
    "ChatRequest",
    "CreateChatbotRequest",
    "DocumentResponse",
    "ErrorResponse",
    "HealthResponse",
]
