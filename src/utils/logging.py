"""Structured logging setup using structlog.

Console output in development, JSON in production: one shared processor
chain feeds either renderer, chosen by ``APP_ENV`` or forced with
``json_output``.  Standard-library ``logging`` is routed through the same
chain, so uvicorn, httpx and chromadb records look like ours.

Log events never carry tenant document text or chat content.  Modules log
ids, counts, sizes and error types; :func:`redact_tenant_content` replaces
any content-bearing key that slips into an event with its length.
"""

import logging
import os
import sys
from typing import Any

import structlog

# Event keys that would hold document or conversation text.
TENANT_CONTENT_KEYS = frozenset(
    {
        "text",
        "content",
        "chunk_text",
        "user_message",
        "response_text",
        "system_prompt",
        "prompt",
        "query",
    }
)

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("chromadb", "httpx", "httpcore", "uvicorn.access")


def redact_tenant_content(
    _logger: Any, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Replace string values of tenant-content keys with ``"<N chars>"``."""
    for key in TENANT_CONTENT_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = f"<{len(value)} chars>"
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib bridge.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: Force JSON output; otherwise JSON only when
            ``APP_ENV=production``.

    Returns:
        A configured structlog BoundLogger.
    """
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"
    level = log_level.upper()

    # Context vars first, so request_id / session_id bindings reach every event.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_tenant_content,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *shared_processors,
                renderer,
            ],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger bound to *name*, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
