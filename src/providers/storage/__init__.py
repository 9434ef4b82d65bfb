"""Blob storage implementations."""

from src.providers.storage.local_blob_storage import LocalBlobStorage

__all__ = ["LocalBlobStorage"]
