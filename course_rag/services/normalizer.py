"""Content normalization for ingested documents.

Turns raw extracted text (or undecoded bytes) into clean, NFC-normalized
text with paragraph breaks preserved, and tags it with a detected language.

Pipeline (each step is a small pure function, applied in order):

    decode  ->  transcript cleanup  ->  markup stripping  ->  NFC
            ->  mojibake repair  ->  special characters  ->  whitespace
            ->  duplicate paragraph removal  ->  language detection
"""

from __future__ import annotations

import re
import unicodedata

import structlog
from bs4 import BeautifulSoup

from course_rag.models.document import NormalizedText
from course_rag.utils.language import UNKNOWN, detect_language

logger = structlog.get_logger(logger_name=__name__)

_MARKUP_HINTS = ("html", "xml", "xhtml")
_TRANSCRIPT_HINTS = ("vtt", "subrip", "srt", "transcript")

_LOOKS_LIKE_MARKUP = re.compile(
    r"<\s*(?:html|body|div|p|br|h[1-6]|ul|ol|li|table|span|article|section)\b[^>]*>",
    re.IGNORECASE,
)

_BLOCK_TAGS = (
    "p", "div", "section", "article", "header", "footer", "aside", "main",
    "h1", "h2", "h3", "h4", "h5", "h6", "li", "ul", "ol", "table", "tr",
    "blockquote", "pre", "figure", "figcaption", "dd", "dt",
)
_DROP_TAGS = ("script", "style", "noscript", "template", "head")

# -- Transcript artifacts -----------------------------------------------------
_CUE_TIMING = re.compile(
    r"^\d{1,2}:\d{2}(?::\d{2})?[.,]\d{3}\s*-->\s*\d{1,2}:\d{2}(?::\d{2})?[.,]\d{3}.*$",
    re.MULTILINE,
)
_CUE_NUMBER = re.compile(r"^\d+\s*$", re.MULTILINE)
_WEBVTT_HEADER = re.compile(r"^WEBVTT.*$", re.MULTILINE)
_BRACKET_TIMESTAMP = re.compile(r"\[\d{1,2}:\d{2}(?::\d{2})?\]")
_NOISE_MARKER = re.compile(
    r"\[(?:INAUDIBLE|CROSSTALK|LAUGHTER|MUSIC|APPLAUSE|SILENCE|PAUSE)\]",
    re.IGNORECASE,
)

# -- Mojibake (UTF-8 bytes decoded as cp1252) -----------------------------------
_MOJIBAKE_MARKERS = re.compile(r"[\u00c2\u00c3][^\x00-\x7f]|\u00e2\u20ac")
_MOJIBAKE_TABLE: list[tuple[str, str]] = [
    ("\u00e2\u20ac\u2122", "\u2019"),
    ("\u00e2\u20ac\u02dc", "\u2018"),
    ("\u00e2\u20ac\u0153", "\u201c"),
    ("\u00e2\u20ac\u009d", "\u201d"),
    ("\u00e2\u20ac\u201c", "\u2013"),
    ("\u00e2\u20ac\u201d", "\u2014"),
    ("\u00e2\u20ac\u00a6", "\u2026"),
    ("\u00e2\u20ac\u00a2", "\u2022"),
    ("\u00e2\u20ac", "\u201d"),
    ("\u00c3\u00a9", "\u00e9"),
    ("\u00c3\u00a8", "\u00e8"),
    ("\u00c3\u00aa", "\u00ea"),
    ("\u00c3\u00a1", "\u00e1"),
    ("\u00c3\u00a0", "\u00e0"),
    ("\u00c3\u00a2", "\u00e2"),
    ("\u00c3\u00ad", "\u00ed"),
    ("\u00c3\u00b3", "\u00f3"),
    ("\u00c3\u00b4", "\u00f4"),
    ("\u00c3\u00ba", "\u00fa"),
    ("\u00c3\u00b1", "\u00f1"),
    ("\u00c3\u00bc", "\u00fc"),
    ("\u00c3\u00b6", "\u00f6"),
    ("\u00c3\u00a4", "\u00e4"),
    ("\u00c3\u00a7", "\u00e7"),
    ("\u00c3\u0178", "\u00df"),
    ("\u00c2\u00a0", "\u00a0"),
    ("\u00c2", ""),
]

# -- Special characters ---------------------------------------------------------
_SPECIAL_CHARS = str.maketrans(
    {
        "\u00a0": " ",  # no-break space
        "\u202f": " ",  # narrow no-break space
        "\u200b": None,  # zero-width space
        "\u200c": None,  # zero-width non-joiner
        "\u200d": None,  # zero-width joiner
        "\u2060": None,  # word joiner
        "\ufeff": None,  # byte-order mark
        "\u2028": "\n",  # line separator
        "\u2029": "\n\n",  # paragraph separator
    }
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# -- Whitespace -----------------------------------------------------------------
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_TRAILING_SPACE = re.compile(r" +\n|\n +")
_MULTI_NEWLINE = re.compile(r"\n{3,}")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")

_MIN_DEDUP_PARAGRAPH_CHARS = 20


class TextNormalizer:
    """Normalize raw document text and detect its language.

    Parameters
    ----------
    language_min_confidence:
        Detection confidence below which the language is ``"unknown"``.
    """

    def __init__(self, language_min_confidence: float = 0.2) -> None:
        self._min_confidence = language_min_confidence

    def normalize(
        self,
        raw_text: str | bytes,
        mime_hint: str | None = None,
        *,
        encoding: str | None = None,
        declared_language: str | None = None,
    ) -> NormalizedText:
        """Run the full normalization pipeline.

        Never raises for malformed content; undecodable bytes are replaced
        and surface later as encoding issues in the quality report.
        """
        text = decode_bytes(raw_text, encoding)
        original_length = len(text)
        hint = (mime_hint or "").lower()

        if any(marker in hint for marker in _TRANSCRIPT_HINTS):
            text = clean_transcript(text)
        if any(marker in hint for marker in _MARKUP_HINTS) or _LOOKS_LIKE_MARKUP.search(text):
            text = strip_markup(text)

        text = unicodedata.normalize("NFC", text)
        text = repair_mojibake(text)
        text = replace_special_characters(text)
        text = normalize_whitespace(text)
        text, removed = remove_duplicate_paragraphs(text)

        if declared_language:
            language, confidence = declared_language, 1.0
        else:
            guess = detect_language(text, self._min_confidence)
            language, confidence = guess.language, guess.confidence
            if language == UNKNOWN:
                confidence = 0.0

        logger.debug(
            "text_normalized",
            original_length=original_length,
            normalized_length=len(text),
            removed_duplicate_paragraphs=removed,
            language=language,
            language_confidence=confidence,
        )
        return NormalizedText(
            text=text,
            language=language,
            language_confidence=min(1.0, max(0.0, confidence)),
            original_length=original_length,
            normalized_length=len(text),
            removed_duplicate_paragraphs=removed,
        )


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def decode_bytes(raw: str | bytes, encoding: str | None = None) -> str:
    """Decode *raw* trying the declared encoding, then UTF-8, then cp1252."""
    if isinstance(raw, str):
        return raw
    if encoding:
        try:
            return raw.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            logger.debug("declared_encoding_failed", encoding=encoding)
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("cp1252", errors="replace")


def clean_transcript(text: str) -> str:
    """Strip subtitle cue numbers, timings and noise markers."""
    cleaned = _WEBVTT_HEADER.sub("", text)
    cleaned = _CUE_TIMING.sub("", cleaned)
    cleaned = _CUE_NUMBER.sub("", cleaned)
    cleaned = _BRACKET_TIMESTAMP.sub("", cleaned)
    cleaned = _NOISE_MARKER.sub("", cleaned)
    return cleaned


def strip_markup(text: str) -> str:
    """Remove HTML/XML tags, keeping block elements as paragraph breaks."""
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")
    return soup.get_text()


def repair_mojibake(text: str) -> str:
    """Undo UTF-8 text that was mis-decoded as cp1252."""
    if not _MOJIBAKE_MARKERS.search(text):
        return text
    try:
        repaired = text.encode("cp1252").decode("utf-8")
    except UnicodeError:
        repaired = text
        for broken, fixed in _MOJIBAKE_TABLE:
            repaired = repaired.replace(broken, fixed)
    return repaired


def replace_special_characters(text: str) -> str:
    text = text.translate(_SPECIAL_CHARS)
    return _CONTROL_CHARS.sub("", text)


def normalize_whitespace(text: str) -> str:
    """Collapse horizontal whitespace and keep at most one blank line."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _TRAILING_SPACE.sub("\n", text)
    # A second pass catches " \n " sequences left by the first.
    text = _TRAILING_SPACE.sub("\n", text)
    text = _MULTI_NEWLINE.sub("\n\n", text)
    return text.strip()


def remove_duplicate_paragraphs(text: str) -> tuple[str, int]:
    """Drop exact repeats (case-insensitive) of paragraphs over 20 characters."""
    seen: set[str] = set()
    kept: list[str] = []
    removed = 0
    for paragraph in _PARAGRAPH_SPLIT.split(text):
        key = paragraph.strip().casefold()
        if len(key) > _MIN_DEDUP_PARAGRAPH_CHARS:
            if key in seen:
                removed += 1
                continue
            seen.add(key)
        kept.append(paragraph)
    return "\n\n".join(p for p in kept if p.strip()), removed
