"""Unit tests for Reciprocal Rank Fusion ordering and provenance."""

from __future__ import annotations

import pytest

from course_rag.models.retrieval import SearchHit, SearchSource
from course_rag.services.fusion import DEFAULT_RRF_K, dedupe_hits, reciprocal_rank_fusion


def _hits(*ids: str, indices: dict[str, int] | None = None) -> list[SearchHit]:
    indices = indices or {}
    return [
        SearchHit(
            chunk_id=cid,
            text=f"text {cid}",
            score=1.0 - n * 0.1,
            payload={"document_id": "doc", "text": f"text {cid}", "chunk_index": indices.get(cid, n)},
        )
        for n, cid in enumerate(ids)
    ]


class TestReciprocalRankFusion:
    def test_default_k_is_sixty(self) -> None:
        assert DEFAULT_RRF_K == 60

    def test_scores_sum_reciprocal_ranks(self) -> None:
        fused = reciprocal_rank_fusion(_hits("A", "B", "C"), _hits("B", "A", "D"))
        by_id = {r.chunk_id: r for r in fused}

        assert by_id["A"].score == pytest.approx(1 / 61 + 1 / 62)
        assert by_id["B"].score == pytest.approx(1 / 62 + 1 / 61)
        assert by_id["C"].score == pytest.approx(1 / 63)
        assert by_id["D"].score == pytest.approx(1 / 63)
        assert by_id["A"].fused_score == by_id["A"].score

    def test_ties_broken_by_vector_rank(self) -> None:
        fused = reciprocal_rank_fusion(_hits("A", "B", "C"), _hits("B", "A", "D"))

        # A and B tie; A ranks higher in the vector list.  C and D tie; D has
        # no vector rank so it sorts last.
        assert [r.chunk_id for r in fused] == ["A", "B", "C", "D"]

    def test_ranks_and_sources_recorded(self) -> None:
        fused = reciprocal_rank_fusion(_hits("A", "C"), _hits("A", "D"))
        by_id = {r.chunk_id: r for r in fused}

        assert (by_id["A"].vector_rank, by_id["A"].keyword_rank) == (1, 1)
        assert by_id["A"].source is SearchSource.FUSED
        assert by_id["C"].source is SearchSource.VECTOR
        assert by_id["C"].keyword_rank is None
        assert by_id["D"].source is SearchSource.KEYWORD
        assert by_id["D"].vector_rank is None

    def test_one_empty_list_passes_the_other_through(self) -> None:
        fused = reciprocal_rank_fusion([], _hits("B", "A"))
        assert [r.chunk_id for r in fused] == ["B", "A"]
        assert all(r.source is SearchSource.KEYWORD for r in fused)

    def test_both_empty(self) -> None:
        assert reciprocal_rank_fusion([], []) == []

    def test_text_is_not_duplicated_into_metadata(self) -> None:
        fused = reciprocal_rank_fusion(_hits("A"), [])
        assert "text" not in fused[0].metadata
        assert fused[0].text == "text A"
        assert fused[0].document_id == "doc"

    def test_custom_k(self) -> None:
        fused = reciprocal_rank_fusion(_hits("A"), [], k=1)
        assert fused[0].score == pytest.approx(0.5)

    def test_duplicates_within_a_list_count_once(self) -> None:
        vector = _hits("A", "B")
        vector.append(vector[0])
        fused = reciprocal_rank_fusion(vector, [])

        assert len(fused) == 2
        assert fused[0].score == pytest.approx(1 / 61)


def test_dedupe_keeps_first_occurrence() -> None:
    hits = _hits("A", "B", "A")
    assert [h.chunk_id for h in dedupe_hits(hits)] == ["A", "B"]
    assert dedupe_hits(hits)[0].score == hits[0].score
