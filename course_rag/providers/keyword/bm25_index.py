"""BM25 keyword index built on ``rank_bm25``.

Entries are held in memory keyed by chunk id.  The Okapi BM25 model is
rebuilt lazily on the first search after a mutation, so bulk ingestion pays
for one rebuild rather than one per batch.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
from rank_bm25 import BM25Okapi

from course_rag.config.constants import PAYLOAD_DOCUMENT_ID
from course_rag.interfaces.keyword_index import IKeywordIndex
from course_rag.models.retrieval import IndexedEntry, SearchHit
from course_rag.utils.filters import matches_filters, validate_filters

logger = structlog.get_logger(logger_name=__name__)

_TERM_RE = re.compile(r"\w+", re.UNICODE)


def tokenize_terms(text: str) -> list[str]:
    """Lower-cased word terms used for both documents and queries."""
    return _TERM_RE.findall(text.lower())


class BM25KeywordIndex(IKeywordIndex):
    """In-memory Okapi BM25 index over chunk text.

    Only chunks sharing at least one term with the query are returned, so a
    query with no lexical overlap yields an empty list rather than the
    whole corpus at score zero.
    """

    def __init__(self, k1: float = 1.5, b: float = 0.75) -> None:
        self._k1 = k1
        self._b = b
        self._entries: dict[str, IndexedEntry] = {}
        self._terms: dict[str, list[str]] = {}
        self._ids: list[str] = []
        self._bm25: BM25Okapi | None = None
        self._dirty = True

    async def index(self, entries: list[IndexedEntry]) -> list[str]:
        for entry in entries:
            self._entries[entry.vector_id] = entry
            self._terms[entry.vector_id] = tokenize_terms(entry.text)
        if entries:
            self._dirty = True
        return [e.vector_id for e in entries]

    async def search(
        self,
        query: str,
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        validate_filters(filters)
        query_terms = tokenize_terms(query)
        if not query_terms or not self._entries or top_k <= 0:
            return []

        bm25 = self._model()
        wanted = set(query_terms)
        positions = [
            position
            for position, chunk_id in enumerate(self._ids)
            if not wanted.isdisjoint(self._terms[chunk_id])
            and matches_filters(self._entries[chunk_id].payload, filters)
        ]
        if not positions:
            return []

        scores = bm25.get_scores(query_terms)
        matched = [(float(scores[p]), self._ids[p]) for p in positions]

        matched.sort(key=lambda item: (-item[0], item[1]))
        return [
            SearchHit(
                chunk_id=chunk_id,
                text=self._entries[chunk_id].text,
                score=score,
                payload=dict(self._entries[chunk_id].payload),
            )
            for score, chunk_id in matched[:top_k]
        ]

    async def delete_by_ids(self, ids: list[str]) -> int:
        removed = 0
        for chunk_id in ids:
            if self._entries.pop(chunk_id, None) is not None:
                self._terms.pop(chunk_id, None)
                removed += 1
        if removed:
            self._dirty = True
        return removed

    async def delete_by_document(self, document_id: str) -> list[str]:
        doomed = sorted(
            cid for cid, e in self._entries.items()
            if e.payload.get(PAYLOAD_DOCUMENT_ID) == document_id
        )
        await self.delete_by_ids(doomed)
        return doomed

    async def list_ids(self, document_id: str | None = None) -> set[str]:
        if document_id is None:
            return set(self._entries)
        return {
            cid for cid, e in self._entries.items()
            if e.payload.get(PAYLOAD_DOCUMENT_ID) == document_id
        }

    def get_provider_name(self) -> str:
        return "bm25"

    def _model(self) -> BM25Okapi:
        if self._dirty or self._bm25 is None:
            self._ids = sorted(self._entries)
            corpus = [self._terms[cid] for cid in self._ids]
            self._bm25 = BM25Okapi(corpus, k1=self._k1, b=self._b)
            self._dirty = False
            logger.debug("bm25_index_rebuilt", documents=len(corpus))
        return self._bm25
