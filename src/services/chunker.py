"""Text chunking with overlapping character windows.

Splits extracted document text into :class:`~src.models.rag.ChunkSpan`
windows sized for embedding models (1000 characters with 100 characters
of overlap by default).

Each window ends at the best natural break found in its second half, in
order of preference:

1. **Paragraph break** (blank line)
2. **Sentence end** -- an abbreviation-aware splitter that does not break
   on "Dr.", "vs.", etc.
3. **Whitespace**
4. **Hard cut** at the window size when none of the above exists

The next window starts exactly ``overlap`` characters before the previous
cut, so concepts spanning a boundary appear whole in at least one chunk.
Offsets refer to the input text after trimming leading and trailing
whitespace; ``span.text == trimmed[span.start:span.end]`` always holds.
"""

from __future__ import annotations

import re

import structlog

from src.models.rag import ChunkSpan
from src.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

# Common abbreviations that should NOT trigger a sentence split.
# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "dr",
        "mr",
        "mrs",
        "ms",
        "prof",
        "jr",
        "sr",
        "st",
        "ave",
        "blvd",
        "vol",
        "no",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "govt",
        "inc",
        "ltd",
        "co",
        "ft",
        "e.g",
        "i.e",
        "fig",
        "nr",
        "ca",
    }
)

# Sentence terminator, optional closing quotes/brackets, then whitespace.
_SENTENCE_END = re.compile(r"[.!?…]+[\"'”’)\]]*\s")

# The word (letters and inner dots) immediately before a terminator.
_TRAILING_WORD = re.compile(r"([A-Za-z][A-Za-z.]*)$")


class TextChunker:
    """Splits text into overlapping character windows at natural breaks.

    Parameters
    ----------
    target_size:
        Maximum characters per chunk (default 1000).
    overlap:
        Characters shared by consecutive chunks (default 100).  Must be
        smaller than ``target_size``.
    """

    def __init__(self, target_size: int = 1000, overlap: int = 100) -> None:
        self._validate(target_size, overlap)
        self._target_size = target_size
        self._overlap = overlap

    @property
    def target_size(self) -> int:
        return self._target_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        target_size: int | None = None,
        overlap: int | None = None,
    ) -> list[ChunkSpan]:
        """Split *text* into overlapping spans.

        Parameters
        ----------
        text:
            The full text to chunk.
        target_size, overlap:
            Per-call overrides of the constructor values.

        Returns
        -------
        list[ChunkSpan]
            Spans in document order.  Empty or whitespace-only input
            returns an empty list; text no longer than ``target_size``
            returns a single span of the trimmed text.
        """
        size = self._target_size if target_size is None else target_size
        lap = self._overlap if overlap is None else overlap
        self._validate(size, lap)

        stripped = text.strip() if text else ""
        if not stripped:
            return []

        length = len(stripped)
        if length <= size:
            return [ChunkSpan(text=stripped, start=0, end=length)]

        # A cut must land past the overlap so every window advances, and in
        # the second half of the window so chunks never degenerate.
        min_cut = max(size // 2, lap + 1)

        spans: list[ChunkSpan] = []
        start = 0
        while True:
            if length - start <= size:
                spans.append(ChunkSpan(text=stripped[start:], start=start, end=length))
                break
            cut = self._find_cut(stripped, start, start + size, start + min_cut)
            spans.append(ChunkSpan(text=stripped[start:cut], start=start, end=cut))
            start = cut - lap

        logger.debug(
            "chunking_complete",
            num_chunks=len(spans),
            text_length=length,
            target_size=size,
            overlap=lap,
        )
        return spans

    # ------------------------------------------------------------------
    # Break detection
    # ------------------------------------------------------------------

    def _find_cut(self, text: str, start: int, end: int, min_cut: int) -> int:
        """Return the cut position (exclusive end of the chunk) in ``[min_cut, end]``."""
        cut = self._paragraph_cut(text, end, min_cut)
        if cut is None:
            cut = self._sentence_cut(text, end, min_cut)
        if cut is None:
            cut = self._whitespace_cut(text, end, min_cut)
        return end if cut is None else cut

    @staticmethod
    def _paragraph_cut(text: str, end: int, min_cut: int) -> int | None:
        idx = text.rfind("\n\n", min_cut - 2, end)
        if idx == -1:
            return None
        return idx + 2

    @staticmethod
    def _sentence_cut(text: str, end: int, min_cut: int) -> int | None:
        best: int | None = None
        # Look back a little before min_cut so a terminator straddling it counts.
        for match in _SENTENCE_END.finditer(text, max(0, min_cut - 8), end):
            if match.end() < min_cut:
                continue
            if _is_abbreviation(text, match.start()):
                continue
            best = match.end()
        return best

    @staticmethod
    def _whitespace_cut(text: str, end: int, min_cut: int) -> int | None:
        for idx in range(end - 1, min_cut - 2, -1):
            if text[idx].isspace():
                return idx + 1
        return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(target_size: int, overlap: int) -> None:
        if target_size <= 0:
            raise ValidationError(message=f"target_size must be positive, got {target_size}")
        if overlap < 0:
            raise ValidationError(message=f"overlap must not be negative, got {overlap}")
        if overlap >= target_size:
            raise ValidationError(
                message=f"overlap ({overlap}) must be smaller than target_size ({target_size})"
            )


def _is_abbreviation(text: str, terminator_pos: int) -> bool:
    """Return ``True`` if the terminator at *terminator_pos* follows an abbreviation or initial."""
    if text[terminator_pos] != ".":
        return False
    match = _TRAILING_WORD.search(text, max(0, terminator_pos - 12), terminator_pos)
    if not match:
        return False
    word = match.group(1).rstrip(".")
    # Single capital letters are initials: "J. R. R. Tolkien".
    if len(word) == 1 and word.isupper():
        return True
    return word.lower() in _ABBREVIATIONS


def chunk_text(text: str, target_size: int = 1000, overlap: int = 100) -> list[ChunkSpan]:
    """Functional shortcut for ``TextChunker(target_size, overlap).chunk(text)``."""
    return TextChunker(target_size, overlap).chunk(text)
