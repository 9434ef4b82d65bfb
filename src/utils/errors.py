"""Custom exception hierarchy for Groundbot.

All application exceptions inherit from :class:`GroundbotError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "sqlite") caused the failure.

The hierarchy is organized by how callers are expected to react:

    GroundbotError  (base -- catch-all for any Groundbot error)
    +-- ValidationError           (bad input, never retried)
    +-- NotFoundError             (unknown document / chatbot)
    +-- ConfigurationError        (startup / missing config)
    +-- TransientProviderError    (retried with backoff inside a component)
    |   +-- RateLimitError
    |   +-- ProviderTimeoutError
    +-- ProviderError             (non-retryable provider failure)
    +-- EmbeddingUnavailable      (embedding retry budget exhausted)
    +-- GenerationUnavailable     (generation retry/fallback exhausted)
    +-- ScopeViolation            (tenant / chatbot boundary crossed)
    +-- DimensionMismatchError    (vector length differs from the index)
    +-- VectorStoreError          (vector backend failure)
    +-- StorageError              (metadata or blob storage failure)
    +-- IngestionError            (document ingestion failures)
        +-- UnsupportedFormat
        +-- CorruptFile
        +-- IngestionInProgressError

Transient errors never escape the component that retries them; only the
exhausted or non-retryable forms reach the ingestion pipeline and the
generation orchestrator, which decide the user-visible outcome.
"""


class GroundbotError(Exception):
    """Base exception for all Groundbot errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

class ValidationError(GroundbotError):
    """Raised for bad input.  Surfaced to the caller as a 4xx, never retried."""

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(GroundbotError):
    """Raised when a document or chatbot does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(GroundbotError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External provider errors
# ---------------------------------------------------------------------------

class TransientProviderError(GroundbotError):
    """Raised for provider failures that may succeed on retry.

    The retry wrapper in :mod:`src.utils.retry` retries only this branch
    of the hierarchy.
    """

    def __init__(
        self,
        message: str = "Transient provider failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(TransientProviderError):
    """Raised when an API rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderTimeoutError(TransientProviderError):
    """Raised when an external call exceeds its timeout."""

    def __init__(
        self,
        message: str = "Provider call timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderError(GroundbotError):
    """Raised for provider failures that retrying will not fix (bad key, bad request)."""

    def __init__(
        self,
        message: str = "Provider call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingUnavailable(GroundbotError):
    """Raised when embeddings cannot be produced after the retry budget is spent.

    Fatal to the unit of work that needed the vectors: an ingestion run
    rolls back, a retrieval call degrades to no context.
    """

    def __init__(
        self,
        message: str = "Embedding provider unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class GenerationUnavailable(GroundbotError):
    """Raised when no language model produced an answer for a chat turn."""

    def __init__(
        self,
        message: str = "Generation provider unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage / vector index errors
# ---------------------------------------------------------------------------

class ScopeViolation(GroundbotError):
    """Raised when a read or write would cross a company or chatbot boundary.

    Messages must only reference ids, never chunk or document content.
    """

    def __init__(
        self,
        message: str = "Request crosses a tenant boundary",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(GroundbotError):
    """Raised when a vector's length differs from the index dimensionality."""

    def __init__(
        self,
        message: str = "Embedding dimension mismatch",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(GroundbotError):
    """Raised when a vector-store operation fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageError(GroundbotError):
    """Raised when the metadata store or blob storage fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class IngestionError(GroundbotError):
    """Raised when document ingestion fails."""

    def __init__(
        self,
        message: str = "Document ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormat(IngestionError):
    """Raised when the declared file type has no extractor."""

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CorruptFile(IngestionError):
    """Raised when a file cannot be decoded as its declared type."""

    def __init__(
        self,
        message: str = "Document file is corrupt",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionInProgressError(IngestionError):
    """Raised when a document already has an ingestion run in flight."""

    def __init__(
        self,
        message: str = "Document ingestion already in progress",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
