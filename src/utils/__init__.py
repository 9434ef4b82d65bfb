"""Utility modules for Groundbot.

Available utility modules (all re-exported here for convenience):

- **errors** -- Domain-specific exception hierarchy rooted at GroundbotError;
  callers branch on the subclass (validation, transient, unavailable, scope)
  instead of broad ``except Exception`` blocks.
- **concurrency** -- asyncio semaphore throttling for embedding sub-batches
  and the in-flight registry that serializes ingestion per document.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **retry** -- tenacity-backed retry-with-backoff wrapper shared by every
  outbound provider call.
- **text_normalizer** -- Extracted-text cleanup, ISO language code
  normalization, and langdetect-based language detection.
"""

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import InFlightRegistry, throttled_gather

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    ConfigurationError,
    EmbeddingUnavailable,
    GenerationUnavailable,
    GroundbotError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    ScopeViolation,
    TransientProviderError,
    ValidationError,
)

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import configure_logging, get_logger

# -- Shared retry policy ---------------------------------------------------
from src.utils.retry import call_with_retry

# -- Text and language normalization ---------------------------------------
from src.utils.text_normalizer import (
    detect_language,
    normalize_extracted_text,
    normalize_language_code,
    resolve_reply_language,
)

__all__ = [
    "ConfigurationError",
    "EmbeddingUnavailable",
    "GenerationUnavailable",
    "GroundbotError",
    "InFlightRegistry",
    "NotFoundError",
    "ProviderError",
    "RateLimitError",
    "ScopeViolation",
    "TransientProviderError",
    "ValidationError",
    "call_with_retry",
    "configure_logging",
    "detect_language",
    "get_logger",
    "normalize_extracted_text",
    "normalize_language_code",
    "resolve_reply_language",
    "throttled_gather",
]
