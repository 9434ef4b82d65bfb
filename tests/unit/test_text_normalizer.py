"""Unit tests for text normalization and language utilities."""

from __future__ import annotations

import pytest

from src.utils.text_normalizer import (
    detect_language,
    normalize_extracted_text,
    normalize_language_code,
    resolve_reply_language,
)

SPANISH = "Nuestro horario de apertura es de nueve de la mañana a cinco de la tarde, de lunes a viernes."
GERMAN = "Unsere Öffnungszeiten sind montags bis freitags von neun bis siebzehn Uhr, am Wochenende geschlossen."
ENGLISH = "Our opening hours are from nine in the morning until five in the afternoon on weekdays."


# ======================================================================
# normalize_extracted_text
# ======================================================================


class TestNormalizeExtractedText:
    def test_empty(self) -> None:
        assert normalize_extracted_text("") == ""

    def test_collapses_horizontal_whitespace(self) -> None:
        assert normalize_extracted_text("a  \t b  c") == "a b c"

    def test_keeps_paragraph_breaks(self) -> None:
        assert normalize_extracted_text("first\n\n\n\n\nsecond") == "first\n\nsecond"

    def test_normalizes_line_endings_and_trailing_spaces(self) -> None:
        assert normalize_extracted_text("one  \r\ntwo\rthree") == "one\ntwo\nthree"

    def test_strips_control_characters(self) -> None:
        assert normalize_extracted_text("bell\x07 and\x0b null\x00") == "bell and null"

    def test_blank_lines_with_spaces_count_as_paragraph_breaks(self) -> None:
        assert normalize_extracted_text("  a \n   \n \n\n b  ") == "a\n\nb"


# ======================================================================
# normalize_language_code
# ======================================================================


class TestNormalizeLanguageCode:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("en", "en"),
            ("ES", "es"),
            ("pt-BR", "pt"),
            ("pt_br", "pt"),
            ("zh-TW", "zh"),
            ("iw", "he"),
            ("English", "en"),
            ("Deutsch", "de"),
            ("  français ", "fr"),
            ("Englsh", "en"),
            ("Portugese", "pt"),
        ],
    )
    def test_known_values(self, value: str, expected: str) -> None:
        assert normalize_language_code(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "Klingon", "123"])
    def test_unknown_values(self, value: str | None) -> None:
        assert normalize_language_code(value) is None


# ======================================================================
# detect_language
# ======================================================================


class TestDetectLanguage:
    def test_detects_long_text(self) -> None:
        assert detect_language(ENGLISH) == "en"
        assert detect_language(SPANISH) == "es"
        assert detect_language(GERMAN) == "de"

    def test_short_text_is_undetected(self) -> None:
        assert detect_language("Hola") is None
        assert detect_language("12345 67890 12345 67890 !!!") is None


# ======================================================================
# resolve_reply_language
# ======================================================================


class TestResolveReplyLanguage:
    def test_requested_language_wins(self) -> None:
        assert resolve_reply_language("es-MX", ENGLISH, ["en", "es"], "en") == "es"

    def test_unsupported_request_uses_detection(self) -> None:
        assert resolve_reply_language("fr", SPANISH, ["en", "es"], "en") == "es"

    def test_detected_language_must_be_supported(self) -> None:
        assert resolve_reply_language(None, GERMAN, ["en", "es"], "en") == "en"

    def test_short_message_falls_back_to_default(self) -> None:
        assert resolve_reply_language(None, "Hola", ["en", "es"], "es") == "es"

    def test_supported_list_accepts_names(self) -> None:
        assert resolve_reply_language("Spanish", ENGLISH, ["English", "Spanish"], "English") == "es"

    def test_unknown_default_becomes_english(self) -> None:
        assert resolve_reply_language(None, "hi", ["en"], "Klingon") == "en"
