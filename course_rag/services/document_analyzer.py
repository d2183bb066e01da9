"""Descriptive document metadata: title, size, reading time, key phrases, layout.

The profile is informational.  It is attached to the ingestion report and
its title feeds the chunk payloads, but it never affects the quality gate.
"""

from __future__ import annotations

import math
import re
from collections import Counter

from course_rag.config.constants import (
    KEY_PHRASE_LIMIT,
    KEY_PHRASE_MIN_LENGTH,
    READING_WORDS_PER_MINUTE,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
    UNTITLED_DOCUMENT,
)
from course_rag.models.document import ContentStructure, DocumentProfile
from course_rag.utils import text_stats

_MARKDOWN_HEADING = re.compile(r"^#+\s")
_LABEL_HEADING = re.compile(r"^[A-Z][^.!?]*:$")
_LIST_ITEM = re.compile(r"^(?:[-*+•]\s|\d+[.)]\s)")
_CODE_FENCE = "```"


class DocumentAnalyzer:
    """Builds a :class:`DocumentProfile` from normalized text."""

    def __init__(
        self,
        words_per_minute: int = READING_WORDS_PER_MINUTE,
        key_phrase_limit: int = KEY_PHRASE_LIMIT,
    ) -> None:
        self._words_per_minute = max(1, words_per_minute)
        self._key_phrase_limit = key_phrase_limit

    def analyze(self, text: str, title: str | None = None) -> DocumentProfile:
        word_count = len(text_stats.words(text))
        return DocumentProfile(
            title=title.strip() if title and title.strip() else extract_title(text),
            word_count=word_count,
            char_count=len(text),
            reading_time_minutes=math.ceil(word_count / self._words_per_minute),
            key_phrases=extract_key_phrases(text, self._key_phrase_limit),
            structure=analyze_structure(text),
        )


def extract_title(text: str) -> str:
    """Use the first non-blank line as a title when it is title-sized."""
    for line in text.splitlines():
        candidate = _MARKDOWN_HEADING.sub("", line.strip()).strip()
        if not candidate:
            continue
        if TITLE_MIN_LENGTH <= len(candidate) <= TITLE_MAX_LENGTH:
            return candidate
        break
    return UNTITLED_DOCUMENT


def extract_key_phrases(text: str, limit: int = KEY_PHRASE_LIMIT) -> list[str]:
    """Rank content terms by TF-IDF, treating each sentence as a document.

    Terms that appear in every sentence fall back to plain frequency; terms
    concentrated in a few sentences are boosted.  Ties break alphabetically.
    """
    if limit <= 0:
        return []
    sentences = [
        [w for w in text_stats.content_words(s.text) if len(w) >= KEY_PHRASE_MIN_LENGTH]
        for s in text_stats.split_sentences(text)
    ]
    sentences = [terms for terms in sentences if terms]
    if not sentences:
        return []

    term_counts = Counter(term for terms in sentences for term in terms)
    sentence_counts = Counter(term for terms in sentences for term in set(terms))
    total = sum(term_counts.values())
    scores = {
        term: (count / total) * (1.0 + math.log(len(sentences) / sentence_counts[term]))
        for term, count in term_counts.items()
    }
    return sorted(scores, key=lambda term: (-scores[term], term))[:limit]


def analyze_structure(text: str) -> ContentStructure:
    """Count headings, list items and fenced code blocks line by line.

    Lines inside a code fence are not inspected for headings or list items.
    An unterminated fence is not counted as a block.
    """
    lines = text.splitlines()
    headings: list[str] = []
    list_items = 0
    code_blocks = 0
    in_code = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(_CODE_FENCE):
            if in_code:
                code_blocks += 1
            in_code = not in_code
            continue
        if in_code or not stripped:
            continue
        if _MARKDOWN_HEADING.match(stripped) or _LABEL_HEADING.match(stripped):
            headings.append(stripped)
        elif _LIST_ITEM.match(stripped):
            list_items += 1

    return ContentStructure(
        total_lines=len(lines),
        paragraphs=len(text_stats.split_paragraphs(text)),
        sentences=len(text_stats.split_sentences(text)),
        headings=headings,
        list_items=list_items,
        code_blocks=code_blocks,
    )
