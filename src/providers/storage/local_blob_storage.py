"""Local-filesystem blob storage.

Files are written under ``<root>/<company_id>/<document_id>/<filename>``
and addressed by ``local://`` URLs relative to the root.  Disk I/O runs
in ``asyncio.to_thread`` so large uploads don't block the event loop.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path

import structlog

from src.interfaces.blob_storage import IBlobStorage
from src.utils.errors import NotFoundError, StorageError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_URL_PREFIX = "local://"

# Anything outside this set is replaced so names can't escape their directory.
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", value).strip("._")
    if not cleaned:
        raise ValidationError(message=f"Invalid path segment: {value!r}", provider_name="local")
    return cleaned


class LocalBlobStorage(IBlobStorage):
    """Stores document bytes on the local disk."""

    def __init__(self, root: str | Path = "data/blobs") -> None:
        self._root = Path(root).resolve()

    async def put(self, company_id: str, document_id: str, filename: str, data: bytes) -> str:
        relative = Path(_safe_segment(company_id)) / _safe_segment(document_id) / _safe_segment(filename)
        target = self._root / relative
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise StorageError(
                message=f"Failed to store blob: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("blob_stored", company_id=company_id, document_id=document_id, size=len(data))
        return f"{_URL_PREFIX}{relative.as_posix()}"

    async def get(self, url: str) -> bytes:
        path = self._resolve(url)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(
                message="Stored document file not found",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to read blob: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete(self, url: str) -> bool:
        path = self._resolve(url)
        if not path.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, path.parent, True)
        return True

    def get_provider_name(self) -> str:
        return "local"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def _resolve(self, url: str) -> Path:
        if not url.startswith(_URL_PREFIX):
            raise ValidationError(message="Not a local blob URL", provider_name=self.get_provider_name())
        path = (self._root / url[len(_URL_PREFIX) :]).resolve()
        if self._root not in path.parents:
            raise ValidationError(message="Blob URL escapes storage root", provider_name=self.get_provider_name())
        return path
