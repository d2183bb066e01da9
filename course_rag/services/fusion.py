"""Reciprocal Rank Fusion over the vector and keyword candidate lists.

Each list is deduplicated by chunk id (first occurrence is the best rank),
then every chunk scores ``sum(1 / (k + rank))`` over the lists it appears
in, with 1-based ranks.  Equal fused scores are ordered by vector rank
(chunks absent from the vector list last), then chunk index within its
document, then chunk id, so the output order is fully deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from course_rag.config.constants import PAYLOAD_CHUNK_INDEX
from course_rag.models.retrieval import SearchHit, SearchResult, SearchSource

DEFAULT_RRF_K = 60

# Sort key stand-in for "not ranked in this list".
_ABSENT = float("inf")


@dataclass
class _Candidate:
    chunk_id: str
    text: str
    payload: dict[str, Any]
    vector_rank: int | None = None
    keyword_rank: int | None = None
    score: float = 0.0


def dedupe_hits(hits: list[SearchHit]) -> list[SearchHit]:
    """Drop repeated chunk ids, keeping the best-ranked occurrence."""
    seen: set[str] = set()
    unique: list[SearchHit] = []
    for hit in hits:
        if hit.chunk_id in seen:
            continue
        seen.add(hit.chunk_id)
        unique.append(hit)
    return unique


def reciprocal_rank_fusion(
    vector_hits: list[SearchHit],
    keyword_hits: list[SearchHit],
    k: int = DEFAULT_RRF_K,
) -> list[SearchResult]:
    """Fuse two ranked lists into one ordered list of :class:`SearchResult`."""
    candidates: dict[str, _Candidate] = {}

    for rank, hit in enumerate(dedupe_hits(vector_hits), start=1):
        cand = candidates.setdefault(hit.chunk_id, _new_candidate(hit))
        cand.vector_rank = rank
        cand.score += 1.0 / (k + rank)

    for rank, hit in enumerate(dedupe_hits(keyword_hits), start=1):
        cand = candidates.setdefault(hit.chunk_id, _new_candidate(hit))
        cand.keyword_rank = rank
        cand.score += 1.0 / (k + rank)

    ordered = sorted(candidates.values(), key=_sort_key)
    return [_to_result(c) for c in ordered]


def tie_break_key(result: SearchResult) -> tuple:
    """Secondary ordering shared by fusion and reranking."""
    return (
        result.vector_rank if result.vector_rank is not None else _ABSENT,
        _chunk_index(result.metadata),
        result.chunk_id,
    )


def _sort_key(cand: _Candidate) -> tuple:
    return (
        -cand.score,
        cand.vector_rank if cand.vector_rank is not None else _ABSENT,
        _chunk_index(cand.payload),
        cand.chunk_id,
    )


def _chunk_index(payload: dict[str, Any]) -> float:
    value = payload.get(PAYLOAD_CHUNK_INDEX)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return _ABSENT


def _new_candidate(hit: SearchHit) -> _Candidate:
    payload = {key: value for key, value in hit.payload.items() if key != "text"}
    return _Candidate(chunk_id=hit.chunk_id, text=hit.text, payload=payload)


def _to_result(cand: _Candidate) -> SearchResult:
    if cand.vector_rank is not None and cand.keyword_rank is not None:
        source = SearchSource.FUSED
    elif cand.vector_rank is not None:
        source = SearchSource.VECTOR
    else:
        source = SearchSource.KEYWORD
    return SearchResult(
        chunk_id=cand.chunk_id,
        text=cand.text,
        score=cand.score,
        source=source,
        vector_rank=cand.vector_rank,
        keyword_rank=cand.keyword_rank,
        fused_score=cand.score,
        metadata=cand.payload,
    )
