"""Text extraction implementations."""

from src.providers.extraction.text_extractor import DocumentTextExtractor, normalize_file_type

__all__ = ["DocumentTextExtractor", "normalize_file_type"]
