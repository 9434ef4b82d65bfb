"""Text normalization and language utilities.

This module handles three concerns:

1. **Extracted-text cleanup** -- Collapses the whitespace noise that PDF
   and HTML extraction leave behind while keeping paragraph breaks, which
   the chunker uses as its preferred boundaries.

2. **Language codes** -- Maps user- or admin-supplied language identifiers
   ("English", "pt-BR", "ES") to bare ISO 639-1 codes, with rapidfuzz
   matching for misspelled language names.

3. **Language detection** -- langdetect-based detection used to tag chunks
   and to pick a reply language when the caller does not request one.
"""

from __future__ import annotations

import re

from langdetect import DetectorFactory, LangDetectException, detect
from rapidfuzz import fuzz, process

from src.utils.logging import get_logger

logger = get_logger(__name__)

# langdetect is non-deterministic unless seeded.
DetectorFactory.seed = 0

# Below this many letters langdetect guesses more than it detects.
_MIN_DETECT_CHARS = 20

_LANGUAGE_NAMES: dict[str, str] = {
    "english": "en",
    "spanish": "es",
    "espanol": "es",
    "español": "es",
    "french": "fr",
    "francais": "fr",
    "français": "fr",
    "german": "de",
    "deutsch": "de",
    "italian": "it",
    "italiano": "it",
    "portuguese": "pt",
    "portugues": "pt",
    "português": "pt",
    "dutch": "nl",
    "nederlands": "nl",
    "polish": "pl",
    "russian": "ru",
    "ukrainian": "uk",
    "turkish": "tr",
    "arabic": "ar",
    "hebrew": "he",
    "hindi": "hi",
    "chinese": "zh",
    "japanese": "ja",
    "korean": "ko",
    "swedish": "sv",
    "danish": "da",
    "norwegian": "no",
    "finnish": "fi",
    "greek": "el",
    "czech": "cs",
    "romanian": "ro",
    "bulgarian": "bg",
    "hungarian": "hu",
}

# langdetect emits a few codes that differ from ISO 639-1 usage.
_DETECTED_ALIASES: dict[str, str] = {
    "zh-cn": "zh",
    "zh-tw": "zh",
    "iw": "he",
}

_ISO_CODE = re.compile(r"^([a-z]{2})(?:[-_][a-z0-9]{2,8})*$")

# Horizontal whitespace runs, excluding newlines.
_MULTI_SPACE = re.compile(r"[ \t\f\v\u00a0]+")

# Collapse 3+ newlines to double-newline (preserves paragraph breaks)
_MULTI_NEWLINE = re.compile(r"\n{3,}")

# Control characters other than tab and newline.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def normalize_extracted_text(text: str) -> str:
    """Clean extracted document text before chunking.

    Normalizes line endings, strips control characters and trailing
    spaces, collapses horizontal whitespace runs, and reduces 3+ blank
    lines to a single paragraph break.  Returns the trimmed result.
    """
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _MULTI_SPACE.sub(" ", cleaned)
    cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
    cleaned = _MULTI_NEWLINE.sub("\n\n", cleaned)
    return cleaned.strip()


def normalize_language_code(value: str | None) -> str | None:
    """Map a language identifier to a two-letter ISO 639-1 code.

    Accepts codes with region subtags ("pt-BR" -> "pt"), any casing, and
    language names in English or the language itself ("Deutsch" -> "de").
    Misspelled names are fuzzy-matched ("Englsh" -> "en").  Returns
    ``None`` when nothing plausible matches.
    """
    if not value:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        return None

    if cleaned in _DETECTED_ALIASES:
        return _DETECTED_ALIASES[cleaned]

    match = _ISO_CODE.match(cleaned)
    if match:
        return match.group(1)

    if cleaned in _LANGUAGE_NAMES:
        return _LANGUAGE_NAMES[cleaned]

    result = process.extractOne(
        cleaned,
        list(_LANGUAGE_NAMES),
        scorer=fuzz.ratio,
        score_cutoff=80,
    )
    if result is None:
        return None
    name, _score, _ = result
    return _LANGUAGE_NAMES[name]


def detect_language(text: str) -> str | None:
    """Detect the language of *text*; ``None`` if too short or undetectable."""
    cleaned = text.strip()
    if sum(ch.isalpha() for ch in cleaned) < _MIN_DETECT_CHARS:
        return None
    try:
        detected = detect(cleaned)
    except LangDetectException:
        logger.debug("language_detection_failed", text_length=len(cleaned))
        return None
    return _DETECTED_ALIASES.get(detected, detected)


def resolve_reply_language(
    requested: str | None,
    message: str,
    supported: list[str],
    default: str,
) -> str:
    """Choose the language a chatbot should answer in.

    Order of preference: the caller's requested language if the chatbot
    supports it, then the detected language of *message* if supported,
    then the chatbot's default language.
    """
    supported_codes = {
        code for code in (normalize_language_code(s) for s in supported) if code
    }
    fallback = normalize_language_code(default) or "en"

    wanted = normalize_language_code(requested)
    if wanted and wanted in supported_codes:
        return wanted

    detected = detect_language(message)
    if detected and detected in supported_codes:
        return detected

    return fallback
