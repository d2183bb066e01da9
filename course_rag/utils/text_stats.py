"""Text segmentation and statistics shared by the chunker and quality assessor.

Everything here is pure and deterministic.  Segmentation functions return
:class:`Span` objects carrying exact character offsets into the input so the
chunker can report ``start_offset``/``end_offset`` and callers can slice the
original normalized text back out.

Token model: a token is a maximal run of non-whitespace characters.  This is
the unit for ``max_size``/``min_size``/``overlap`` and for ``token_count``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Abbreviations whose trailing period must not end a sentence.
_ABBREVIATIONS = frozenset(
    {
        "dr", "mr", "mrs", "ms", "prof", "jr", "sr", "st", "vs", "etc",
        "e.g", "i.e", "fig", "no", "vol", "approx", "dept", "inc", "ltd",
        "co", "cf", "al", "ch", "sec", "eq",
    }
)

_TOKEN_RE = re.compile(r"\S+")
_WORD_RE = re.compile(r"[^\W\d_]+(?:['’][^\W\d_]+)*", re.UNICODE)
_SENTENCE_END_RE = re.compile(r"[.!?。！？]+[\"'”’)\]]*(?=\s|$)")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n\s*")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")

STOP_WORDS = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "also", "am", "an",
        "and", "any", "are", "as", "at", "be", "because", "been", "before",
        "being", "between", "both", "but", "by", "can", "could", "did", "do",
        "does", "doing", "down", "during", "each", "few", "for", "from",
        "further", "had", "has", "have", "having", "he", "her", "here",
        "hers", "him", "his", "how", "i", "if", "in", "into", "is", "it",
        "its", "itself", "just", "may", "me", "more", "most", "my", "no",
        "nor", "not", "now", "of", "off", "on", "once", "one", "only", "or",
        "other", "our", "out", "over", "own", "same", "she", "should", "so",
        "some", "such", "than", "that", "the", "their", "them", "then",
        "there", "these", "they", "this", "those", "through", "to", "too",
        "under", "until", "up", "very", "was", "we", "were", "what", "when",
        "where", "which", "while", "who", "whom", "why", "will", "with",
        "would", "you", "your",
    }
)


@dataclass(frozen=True)
class Span:
    """A slice of the source text with its character offsets."""

    text: str
    start: int
    end: int


def tokenize(text: str) -> list[Span]:
    """Return whitespace-delimited tokens with offsets."""
    return [Span(m.group(), m.start(), m.end()) for m in _TOKEN_RE.finditer(text)]


def count_tokens(text: str) -> int:
    return sum(1 for _ in _TOKEN_RE.finditer(text))


def words(text: str) -> list[str]:
    """Return alphabetic words (lower-cased), ignoring digits and punctuation."""
    return [w.lower() for w in _WORD_RE.findall(text)]


def content_words(text: str) -> list[str]:
    """Return words with stop words and very short words removed."""
    return [w for w in words(text) if len(w) > 2 and w not in STOP_WORDS]


def split_paragraphs(text: str) -> list[Span]:
    """Split on blank lines, returning trimmed paragraph spans."""
    spans: list[Span] = []
    last = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        _append_trimmed(spans, text, last, match.start())
        last = match.end()
    _append_trimmed(spans, text, last, len(text))
    return spans


def split_sentences(text: str, offset: int = 0) -> list[Span]:
    """Split *text* into sentence spans, respecting common abbreviations.

    Sentence ends are ``.``, ``!``, ``?`` (and CJK full stops) followed by
    whitespace or end of text.  A period after a known abbreviation or a
    single capital initial does not end a sentence.  Paragraph breaks always
    end a sentence.  Offsets are shifted by *offset*.
    """
    spans: list[Span] = []
    for paragraph in split_paragraphs(text):
        last = paragraph.start
        for match in _SENTENCE_END_RE.finditer(text, paragraph.start, paragraph.end):
            if _is_abbreviation(text, match.start()):
                continue
            _append_trimmed(spans, text, last, match.end(), offset)
            last = match.end()
        _append_trimmed(spans, text, last, paragraph.end, offset)
    return spans


def count_syllables(word: str) -> int:
    """Approximate English syllable count (vowel groups, silent final e)."""
    cleaned = re.sub(r"[^a-z]", "", word.lower())
    if not cleaned:
        return 0
    count = len(_VOWEL_GROUP_RE.findall(cleaned))
    if cleaned.endswith("e") and not cleaned.endswith(("le", "ee")) and count > 1:
        count -= 1
    return max(count, 1)


def jaccard(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def _is_abbreviation(text: str, period_index: int) -> bool:
    if text[period_index] != ".":
        return False
    start = period_index
    while start > 0 and not text[start - 1].isspace():
        start -= 1
    token = text[start:period_index].lstrip("(\"'").lower()
    if token in _ABBREVIATIONS:
        return True
    # Single initials such as "J. K. Rowling".
    return len(token) == 1 and token.isalpha()


def _append_trimmed(spans: list[Span], text: str, start: int, end: int, offset: int = 0) -> None:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return
    lead = len(segment) - len(segment.lstrip())
    real_start = start + lead
    spans.append(Span(stripped, real_start + offset, real_start + len(stripped) + offset))
