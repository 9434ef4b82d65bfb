"""Document text extraction.

Turns uploaded bytes into plain text according to the uploader's declared
file type.  PDF pages are read with PyMuPDF (fitz), HTML and EPUB markup
is stripped with BeautifulSoup, and everything passes through
:func:`~src.utils.text_normalizer.normalize_extracted_text` so the chunker
sees consistent paragraph breaks.

For PDFs the character offset at which each page starts is recorded so
chunks can carry a page number.
"""

from __future__ import annotations

import csv
import io
import os
import tempfile

import ebooklib
import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from bs4 import BeautifulSoup
from ebooklib import epub

from src.interfaces.text_extractor import ITextExtractor
from src.models.document import ExtractedText
from src.utils.errors import CorruptFile, UnsupportedFormat
from src.utils.text_normalizer import normalize_extracted_text

logger = structlog.get_logger(logger_name=__name__)

# Declared type (extension or MIME type) -> canonical type.
_TYPE_ALIASES: dict[str, str] = {
    "txt": "txt",
    "text": "txt",
    "text/plain": "txt",
    "md": "md",
    "markdown": "md",
    "text/markdown": "md",
    "csv": "csv",
    "text/csv": "csv",
    "html": "html",
    "htm": "html",
    "text/html": "html",
    "pdf": "pdf",
    "application/pdf": "pdf",
    "epub": "epub",
    "application/epub+zip": "epub",
}

_TEXT_ENCODINGS = ("utf-8-sig", "cp1252")


def normalize_file_type(declared_type: str) -> str | None:
    """Map an extension (``".PDF"``) or MIME type to a canonical type, or ``None``."""
    key = declared_type.strip().lower().lstrip(".")
    # Drop MIME parameters such as "; charset=utf-8".
    key = key.split(";", 1)[0].strip()
    return _TYPE_ALIASES.get(key)


class DocumentTextExtractor(ITextExtractor):
    """Extracts text from plain text, Markdown, CSV, HTML, PDF and EPUB files."""

    def extract(self, data: bytes, file_type: str) -> ExtractedText:
        canonical = normalize_file_type(file_type)
        if canonical is None:
            raise UnsupportedFormat(message=f"Unsupported file type: {file_type!r}")

        if canonical == "pdf":
            result = self._extract_pdf(data)
        elif canonical == "epub":
            result = ExtractedText(text=self._extract_epub(data))
        elif canonical == "html":
            result = ExtractedText(text=self._extract_html(self._decode(data)))
        elif canonical == "csv":
            result = ExtractedText(text=self._extract_csv(self._decode(data)))
        else:
            result = ExtractedText(text=normalize_extracted_text(self._decode(data)))

        logger.debug(
            "text_extracted",
            file_type=canonical,
            byte_size=len(data),
            char_length=len(result.text),
            pages=len(result.page_starts) or None,
        )
        return result

    def supported_types(self) -> list[str]:
        return sorted(set(_TYPE_ALIASES.values()))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(data: bytes) -> str:
        if b"\x00" in data:
            raise CorruptFile(message="Text file contains binary data")
        for encoding in _TEXT_ENCODINGS:
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise CorruptFile(message="Text file is not valid UTF-8 or Windows-1252")

    @staticmethod
    def _extract_pdf(data: bytes) -> ExtractedText:
        """Extract page texts and join them with paragraph breaks.

        Empty pages are skipped; ``page_starts`` still has one entry per
        kept page, so page numbers are recovered from the original index.
        """
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 -- fitz raises several unrelated types
            raise CorruptFile(message=f"Cannot open PDF: {exc}") from exc

        parts: list[str] = []
        page_starts: list[int] = []
        offset = 0
        try:
            for page_num in range(len(doc)):
                text = normalize_extracted_text(doc[page_num].get_text("text"))
                # Pages without text keep their slot so page numbers stay aligned.
                page_starts.append(offset)
                if not text:
                    continue
                if parts:
                    offset += 2  # "\n\n" separator
                    page_starts[-1] = offset
                parts.append(text)
                offset += len(text)
        except Exception as exc:  # noqa: BLE001
            raise CorruptFile(message=f"Cannot read PDF page: {exc}") from exc
        finally:
            doc.close()

        if not parts:
            logger.warning("pdf_no_text_extracted", pages=len(page_starts))
        return ExtractedText(text="\n\n".join(parts), page_starts=page_starts)

    @staticmethod
    def _extract_html(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return normalize_extracted_text(soup.get_text(separator="\n"))

    @staticmethod
    def _extract_csv(content: str) -> str:
        """Render rows as ``header: value`` lines, one paragraph per row."""
        try:
            rows = list(csv.reader(io.StringIO(content)))
        except csv.Error as exc:
            raise CorruptFile(message=f"Cannot parse CSV: {exc}") from exc
        if not rows:
            return ""
        header, body = rows[0], rows[1:]
        if not body:
            return normalize_extracted_text(", ".join(header))
        paragraphs = []
        for row in body:
            pairs = [f"{h}: {v}" for h, v in zip(header, row) if v.strip()]
            if pairs:
                paragraphs.append("\n".join(pairs))
        return normalize_extracted_text("\n\n".join(paragraphs))

    @staticmethod
    def _extract_epub(data: bytes) -> str:
        # ebooklib reads from a path, so spill the bytes to a temp file.
        fd, path = tempfile.mkstemp(suffix=".epub")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            try:
                book = epub.read_epub(path, options={"ignore_ncx": True})
            except Exception as exc:  # noqa: BLE001
                raise CorruptFile(message=f"Cannot open EPUB: {exc}") from exc

            chapters: list[str] = []
            for item in book.get_items_of_type(ebooklib.ITEM_DOCUMENT):
                html_content = item.get_content().decode("utf-8", errors="replace")
                soup = BeautifulSoup(html_content, "html.parser")
                text = normalize_extracted_text(soup.get_text(separator="\n"))
                if text:
                    chapters.append(text)
            return "\n\n".join(chapters)
        finally:
            os.unlink(path)
