"""Abstract base class for raw document file storage."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: LocalBlobStorage (src/providers/storage/)
class IBlobStorage(ABC):
    """Contract for storing the original bytes of uploaded documents.

    Stored files are addressed by an opaque URL returned from :meth:`put`.
    Implementations must never place one company's files where another
    company's URL can reach them.
    """

    @abstractmethod
    async def put(self, company_id: str, document_id: str, filename: str, data: bytes) -> str:
        """Store *data* and return its URL."""

    @abstractmethod
    async def get(self, url: str) -> bytes:
        """Return the bytes at *url*.

        Raises
        ------
        src.utils.errors.NotFoundError
            If nothing is stored at *url*.
        """

    @abstractmethod
    async def delete(self, url: str) -> bool:
        """Delete the file at *url*; ``True`` if it existed."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for this backend, e.g. ``"local"``."""
