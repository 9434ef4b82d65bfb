"""Abstract base class for document text extraction."""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.document import ExtractedText


# Concrete implementation: DocumentTextExtractor (src/providers/extraction/)
class ITextExtractor(ABC):
    """Contract for turning an uploaded file into plain text."""

    @abstractmethod
    def extract(self, data: bytes, file_type: str) -> ExtractedText:
        """Extract plain text from *data* of the declared *file_type*.

        Raises
        ------
        src.utils.errors.UnsupportedFormat
            If *file_type* is not one of :meth:`supported_types`.
        src.utils.errors.CorruptFile
            If the bytes cannot be parsed as *file_type*.
        """

    @abstractmethod
    def supported_types(self) -> list[str]:
        """Return the normalized file types this extractor accepts, e.g. ``["pdf", "txt"]``."""
