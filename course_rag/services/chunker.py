"""Text chunking with four strategies and exact character offsets.

Splits normalized text into :class:`~course_rag.models.document.Chunk`
objects.  Sizes are measured in word tokens (maximal runs of
non-whitespace), so every chunk is an exact slice ``text[start:end]`` of
the input and the union of chunks covers all non-whitespace content.

Strategies:

* **fixed** -- windows of ``max_size`` tokens advancing by
  ``max_size - overlap``.  A final window shorter than ``min_size`` is
  merged into the previous chunk.
* **sentence** -- whole sentences are packed greedily up to ``max_size``;
  consecutive chunks share trailing sentences worth up to ``overlap``
  tokens.  An oversized sentence becomes its own chunk.
* **paragraph** -- the same packing at paragraph granularity.  A paragraph
  over budget is split at sentence boundaries instead.
* **semantic** -- a new chunk starts where vocabulary similarity between
  neighbouring sentence windows drops below ``semantic_threshold``, once
  the current chunk holds ``min_size`` tokens.  Still bounded by
  ``max_size``.  When the text has no such topic shift, paragraph
  chunking is used.

Chunk indices are 0-based and contiguous; ids are derived from the
document id and index, so re-chunking the same text yields the same ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from course_rag.models.document import Chunk, ChunkingOptions, ChunkStrategy, make_chunk_id
from course_rag.utils import text_stats
from course_rag.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

# Sentences on each side of a candidate semantic boundary.
_SEMANTIC_WINDOW = 2


@dataclass(frozen=True)
class _Unit:
    """A sentence or paragraph span with its token count."""

    start: int
    end: int
    tokens: int


class TextChunker:
    """Splits text into chunks using a configurable strategy.

    Parameters
    ----------
    semantic_threshold:
        Jaccard similarity below which the semantic strategy considers a
        sentence boundary to be a topic shift.
    """

    def __init__(self, semantic_threshold: float = 0.1) -> None:
        self._semantic_threshold = semantic_threshold

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        document_id: str,
        text: str,
        strategy: ChunkStrategy | str = ChunkStrategy.PARAGRAPH,
        options: ChunkingOptions | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[Chunk]:
        """Split *text* into :class:`Chunk` objects.

        Raises
        ------
        ValidationError
            If the options are inconsistent or the strategy is unknown.
            Checked before any splitting happens.
        """
        options = options or ChunkingOptions()
        validate_options(options)
        try:
            strategy = ChunkStrategy(strategy)
        except ValueError as exc:
            raise ValidationError(message=f"Unknown chunk strategy {strategy!r}") from exc

        if not text or not text.strip():
            return []

        if strategy is ChunkStrategy.FIXED:
            spans = self._fixed_spans(text, options)
            applied = strategy
        elif strategy is ChunkStrategy.SENTENCE:
            spans = self._pack(text, self._sentence_units(text), options)
            applied = strategy
        elif strategy is ChunkStrategy.PARAGRAPH:
            spans = self._paragraph_spans(text, options)
            applied = strategy
        else:
            spans = self._semantic_spans(text, options)
            applied = strategy
            if spans is None:
                spans = self._paragraph_spans(text, options)
                applied = ChunkStrategy.PARAGRAPH

        base_metadata = dict(metadata or {})
        chunks = [
            Chunk(
                chunk_id=make_chunk_id(document_id, index),
                document_id=document_id,
                index=index,
                text=text[start:end],
                token_count=text_stats.count_tokens(text[start:end]),
                start_offset=start,
                end_offset=end,
                strategy=applied,
                metadata=base_metadata,
            )
            for index, (start, end) in enumerate(spans)
        ]

        logger.debug(
            "chunking_complete",
            document_id=document_id,
            strategy=applied.value,
            requested_strategy=strategy.value,
            num_chunks=len(chunks),
            avg_tokens=self._avg_tokens(chunks),
        )
        return chunks

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _fixed_spans(text: str, options: ChunkingOptions) -> list[tuple[int, int]]:
        tokens = text_stats.tokenize(text)
        step = options.max_size - options.overlap
        windows: list[tuple[int, int]] = []
        for start in range(0, len(tokens), step):
            end = min(start + options.max_size, len(tokens))
            windows.append((start, end))
            if end == len(tokens):
                break

        if len(windows) > 1:
            last_start, last_end = windows[-1]
            if last_end - last_start < options.min_size:
                prev_start, _ = windows[-2]
                windows[-2:] = [(prev_start, last_end)]

        return [(tokens[s].start, tokens[e - 1].end) for s, e in windows]

    def _paragraph_spans(self, text: str, options: ChunkingOptions) -> list[tuple[int, int]]:
        units: list[_Unit] = []
        for paragraph in text_stats.split_paragraphs(text):
            unit = _make_unit(text, paragraph.start, paragraph.end)
            if unit.tokens > options.max_size:
                # Split oversized paragraphs into sentences and keep packing.
                units.extend(
                    _make_unit(text, s.start, s.end)
                    for s in text_stats.split_sentences(paragraph.text, offset=paragraph.start)
                )
            else:
                units.append(unit)
        return self._pack(text, units, options)

    @staticmethod
    def _sentence_units(text: str) -> list[_Unit]:
        return [_make_unit(text, s.start, s.end) for s in text_stats.split_sentences(text)]

    def _semantic_spans(
        self, text: str, options: ChunkingOptions
    ) -> list[tuple[int, int]] | None:
        """Return semantic chunk spans, or ``None`` when no topic shift exists."""
        sentences = text_stats.split_sentences(text)
        if len(sentences) < 2:
            return None

        vocab = [set(text_stats.content_words(s.text)) for s in sentences]
        # shift[i] is True when a topic shift occurs before sentence i.
        shift = [False] * len(sentences)
        for i in range(1, len(sentences)):
            left = set().union(*vocab[max(0, i - _SEMANTIC_WINDOW) : i])
            right = set().union(*vocab[i : i + _SEMANTIC_WINDOW])
            shift[i] = text_stats.jaccard(left, right) < self._semantic_threshold
        if not any(shift):
            return None

        units = [_make_unit(text, s.start, s.end) for s in sentences]
        spans: list[tuple[int, int]] = []
        current: list[_Unit] = []
        current_tokens = 0
        for i, unit in enumerate(units):
            boundary = shift[i] and current_tokens >= options.min_size
            over_budget = current_tokens + unit.tokens > options.max_size
            if current and (boundary or over_budget):
                spans.append((current[0].start, current[-1].end))
                current, current_tokens = [], 0
            current.append(unit)
            current_tokens += unit.tokens
        if current:
            spans.append((current[0].start, current[-1].end))
        return self._merge_small_tail(text, spans, options)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def _pack(
        self, text: str, units: list[_Unit], options: ChunkingOptions
    ) -> list[tuple[int, int]]:
        """Greedily pack *units* into spans of at most ``max_size`` tokens.

        After each flush the next chunk starts with trailing units of the
        previous one, up to ``overlap`` tokens, trimmed so the incoming unit
        still fits.
        """
        spans: list[tuple[int, int]] = []
        current: list[_Unit] = []
        current_tokens = 0

        for unit in units:
            if unit.tokens > options.max_size:
                # An oversized unit stands alone; no overlap into or out of it.
                if current:
                    spans.append((current[0].start, current[-1].end))
                spans.append((unit.start, unit.end))
                current, current_tokens = [], 0
                continue

            if current and current_tokens + unit.tokens > options.max_size:
                spans.append((current[0].start, current[-1].end))
                budget = min(options.overlap, options.max_size - unit.tokens)
                current, current_tokens = self._build_overlap(current, budget)

            current.append(unit)
            current_tokens += unit.tokens

        if current:
            tail = (current[0].start, current[-1].end)
            # Don't emit a chunk made only of overlap already in the last span.
            if not spans or tail[1] > spans[-1][1]:
                spans.append(tail)

        return self._merge_small_tail(text, spans, options)

    @staticmethod
    def _build_overlap(parts: list[_Unit], budget: int) -> tuple[list[_Unit], int]:
        """Return tail units from *parts* whose combined tokens <= *budget*."""
        overlap: list[_Unit] = []
        tokens = 0
        for unit in reversed(parts):
            if tokens + unit.tokens > budget:
                break
            overlap.insert(0, unit)
            tokens += unit.tokens
        return overlap, tokens

    @staticmethod
    def _merge_small_tail(
        text: str, spans: list[tuple[int, int]], options: ChunkingOptions
    ) -> list[tuple[int, int]]:
        """Fold a final span under ``min_size`` into its predecessor if it fits."""
        if len(spans) < 2:
            return spans
        last_start, last_end = spans[-1]
        if text_stats.count_tokens(text[last_start:last_end]) >= options.min_size:
            return spans
        prev_start, _ = spans[-2]
        if text_stats.count_tokens(text[prev_start:last_end]) > options.max_size:
            return spans
        return [*spans[:-2], (prev_start, last_end)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _avg_tokens(chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        return sum(c.token_count for c in chunks) // len(chunks)


def validate_options(options: ChunkingOptions) -> None:
    """Raise :class:`ValidationError` for inconsistent chunking options."""
    if options.max_size <= 0 or options.min_size <= 0:
        raise ValidationError(
            message=f"Chunk sizes must be positive (max={options.max_size}, min={options.min_size})"
        )
    if options.overlap < 0:
        raise ValidationError(message=f"Overlap must not be negative (got {options.overlap})")
    if options.overlap >= options.max_size:
        raise ValidationError(
            message=f"Overlap ({options.overlap}) must be smaller than max size ({options.max_size})"
        )
    if options.min_size > options.max_size:
        raise ValidationError(
            message=f"Min size ({options.min_size}) must not exceed max size ({options.max_size})"
        )


def _make_unit(text: str, start: int, end: int) -> _Unit:
    return _Unit(start=start, end=end, tokens=text_stats.count_tokens(text[start:end]))
