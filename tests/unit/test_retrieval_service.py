"""Unit tests for RetrievalService -- hybrid search, degradation and reranking."""

from __future__ import annotations

import pytest

from course_rag.models.retrieval import IndexedEntry, RetrieveOptions, SearchSource
from course_rag.providers.keyword.bm25_index import BM25KeywordIndex
from course_rag.providers.vector_store.memory_store import InMemoryVectorStore
from course_rag.services.embedding_orchestrator import EmbeddingOrchestrator
from course_rag.services.index_manager import IndexManager
from course_rag.services.retrieval_service import RetrievalService
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import (
    IngestionCancelledError,
    RetrievalUnavailableError,
    ValidationError,
)
from course_rag.utils.retry import CircuitBreaker, RetryPolicy
from tests.conftest import (
    TEST_DIMENSION,
    FailingEmbeddingClient,
    FlakyKeywordIndex,
    FlakyVectorStore,
    HashEmbeddingClient,
    OverlapReranker,
)

_CORPUS = [
    ("bio-1", "bio-101", 80.0, "Photosynthesis lets plants turn light into sugar in their leaves."),
    ("bio-2", "bio-101", 65.0, "Roots take up water and minerals from the soil."),
    ("bio-3", "bio-101", 90.0, "Leaves lose water through small pores called stomata."),
    ("chem-1", "chem-201", 75.0, "An acid donates protons while a base accepts them."),
    ("chem-2", "chem-201", 55.0, "Water is a polar molecule that dissolves many salts."),
    ("hist-1", "hist-110", 70.0, "The printing press spread ideas quickly across Europe."),
]


async def _seeded_index(
    policy: RetryPolicy,
    vector_store=None,
    keyword_index=None,
) -> IndexManager:
    index = IndexManager(
        vector_store or InMemoryVectorStore(),
        keyword_index or BM25KeywordIndex(),
        dimension=TEST_DIMENSION,
        policy=policy,
        vector_breaker=CircuitBreaker("vector", failure_threshold=10),
        keyword_breaker=CircuitBreaker("keyword", failure_threshold=10),
    )
    hasher = HashEmbeddingClient()
    vectors = await hasher.embed([text for *_, text in _CORPUS])
    entries = [
        IndexedEntry(
            vector_id=chunk_id,
            vector=vector,
            payload={
                "document_id": chunk_id.split("-")[0],
                "course_id": course_id,
                "quality_score": quality,
                "language": "en",
                "chunk_index": 0,
                "text": text,
            },
        )
        for (chunk_id, course_id, quality, text), vector in zip(_CORPUS, vectors)
    ]
    await index.upsert(entries)
    return index


def _service(index: IndexManager, policy: RetryPolicy, client=None, reranker=None) -> RetrievalService:
    embedder = EmbeddingOrchestrator(
        client or HashEmbeddingClient(),
        dimension=TEST_DIMENSION,
        policy=policy,
        breaker=CircuitBreaker("embed", failure_threshold=10),
    )
    return RetrievalService(
        embedder,
        index,
        reranker=reranker,
        policy=policy,
        rerank_breaker=CircuitBreaker("rerank", failure_threshold=10),
    )


# ======================================================================
# Happy path
# ======================================================================


class TestHybridRetrieval:
    @pytest.mark.asyncio
    async def test_returns_fused_results(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)

        response = await service.retrieve("water in the soil", RetrieveOptions(top_k=3))

        assert not response.partial
        assert response.failed_sources == []
        assert not response.reranked
        assert 0 < len(response.results) <= 3
        ids = [r.chunk_id for r in response.results]
        assert "bio-2" in ids
        scores = [r.score for r in response.results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_top_k_truncates(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        response = await service.retrieve("water", RetrieveOptions(top_k=1))

        assert len(response.results) == 1
        assert response.total_candidates >= 1

    @pytest.mark.asyncio
    async def test_results_carry_metadata(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        response = await service.retrieve("acid base protons", RetrieveOptions(top_k=1))

        top = response.results[0]
        assert top.chunk_id == "chem-1"
        assert top.metadata["course_id"] == "chem-201"
        assert top.document_id == "chem"
        assert top.source is SearchSource.FUSED


# ======================================================================
# Filters
# ======================================================================


class TestFilters:
    @pytest.mark.asyncio
    async def test_course_filter(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        response = await service.retrieve("water", RetrieveOptions(top_k=10, course_id="chem-201"))

        assert response.results
        assert all(r.metadata["course_id"] == "chem-201" for r in response.results)

    @pytest.mark.asyncio
    async def test_min_quality_filter(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        response = await service.retrieve("water leaves soil", RetrieveOptions(top_k=10, min_quality=70))

        assert response.results
        assert all(r.metadata["quality_score"] >= 70 for r in response.results)

    @pytest.mark.asyncio
    async def test_language_filter_excludes_everything(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        response = await service.retrieve("water", RetrieveOptions(language="de"))
        assert response.results == []


# ======================================================================
# Degradation
# ======================================================================


class TestDegradedMode:
    @pytest.mark.asyncio
    async def test_keyword_failure_returns_vector_results(self, fast_policy: RetryPolicy) -> None:
        keyword = FlakyKeywordIndex()
        index = await _seeded_index(fast_policy, keyword_index=keyword)
        keyword.fail_search = True

        response = await _service(index, fast_policy).retrieve("water")

        assert response.partial
        assert response.failed_sources == ["keyword"]
        assert response.results
        assert all(r.source is SearchSource.VECTOR for r in response.results)

    @pytest.mark.asyncio
    async def test_vector_failure_returns_keyword_results(self, fast_policy: RetryPolicy) -> None:
        store = FlakyVectorStore()
        index = await _seeded_index(fast_policy, vector_store=store)
        store.fail_search = True

        response = await _service(index, fast_policy).retrieve("water")

        assert response.partial
        assert response.failed_sources == ["vector"]
        assert all(r.source is SearchSource.KEYWORD for r in response.results)
        assert {"bio-2", "bio-3", "chem-2"} <= {r.chunk_id for r in response.results}

    @pytest.mark.asyncio
    async def test_query_embedding_failure_degrades_to_keyword(self, fast_policy: RetryPolicy) -> None:
        index = await _seeded_index(fast_policy)
        service = _service(index, fast_policy, client=FailingEmbeddingClient())

        response = await service.retrieve("water")

        assert response.partial
        assert response.failed_sources == ["vector"]
        assert response.results

    @pytest.mark.asyncio
    async def test_both_paths_failing_raises(self, fast_policy: RetryPolicy) -> None:
        keyword = FlakyKeywordIndex()
        index = await _seeded_index(fast_policy, keyword_index=keyword)
        keyword.fail_search = True
        service = _service(index, fast_policy, client=FailingEmbeddingClient())

        with pytest.raises(RetrievalUnavailableError):
            await service.retrieve("water")


# ======================================================================
# Reranking
# ======================================================================


class TestReranking:
    @pytest.mark.asyncio
    async def test_reranker_reorders_results(self, fast_policy: RetryPolicy) -> None:
        reranker = OverlapReranker()
        service = _service(await _seeded_index(fast_policy), fast_policy, reranker=reranker)

        response = await service.retrieve("leaves water stomata", RetrieveOptions(top_k=3))

        assert response.reranked
        assert len(reranker.calls) == 1
        assert response.results[0].chunk_id == "bio-3"
        assert response.results[0].source is SearchSource.RERANKED
        assert response.results[0].rerank_score == pytest.approx(1.0)
        assert response.results[0].fused_score > 0

    @pytest.mark.asyncio
    async def test_reranker_failure_falls_back_to_fused_order(self, fast_policy: RetryPolicy) -> None:
        index = await _seeded_index(fast_policy)
        plain = await _service(index, fast_policy).retrieve("water soil", RetrieveOptions(top_k=4))
        failing = _service(index, fast_policy, reranker=OverlapReranker(fail=True))

        response = await failing.retrieve("water soil", RetrieveOptions(top_k=4))

        assert not response.reranked
        assert not response.partial
        assert [r.chunk_id for r in response.results] == [r.chunk_id for r in plain.results]

    @pytest.mark.asyncio
    async def test_rerank_can_be_disabled_per_query(self, fast_policy: RetryPolicy) -> None:
        reranker = OverlapReranker()
        service = _service(await _seeded_index(fast_policy), fast_policy, reranker=reranker)

        response = await service.retrieve("water", RetrieveOptions(enable_rerank=False))

        assert not response.reranked
        assert reranker.calls == []

    @pytest.mark.asyncio
    async def test_out_of_range_index_falls_back(self, fast_policy: RetryPolicy) -> None:
        class _BrokenReranker(OverlapReranker):
            async def rerank(self, query, texts, top_n=None):
                return [(len(texts) + 5, 0.9)]

        service = _service(await _seeded_index(fast_policy), fast_policy, reranker=_BrokenReranker())
        response = await service.retrieve("water")

        assert not response.reranked
        assert response.results

    @pytest.mark.asyncio
    async def test_partial_rerank_keeps_leftovers_after(self, fast_policy: RetryPolicy) -> None:
        class _TopOneReranker(OverlapReranker):
            async def rerank(self, query, texts, top_n=None):
                return [(len(texts) - 1, 0.99)]

        index = await _seeded_index(fast_policy)
        plain = await _service(index, fast_policy).retrieve("water", RetrieveOptions(top_k=3))
        service = _service(index, fast_policy, reranker=_TopOneReranker())

        response = await service.retrieve("water", RetrieveOptions(top_k=3))

        assert response.reranked
        assert response.results[0].source is SearchSource.RERANKED
        assert [r.chunk_id for r in response.results[1:]] == [
            r.chunk_id for r in plain.results if r.chunk_id != response.results[0].chunk_id
        ][:2]

    @pytest.mark.asyncio
    async def test_unscored_tail_ranks_below_reranked_head(self, fast_policy: RetryPolicy) -> None:
        class _TopTwoReranker(OverlapReranker):
            async def rerank(self, query, texts, top_n=None):
                return [(1, 0.02), (0, 0.01)]

        service = _service(await _seeded_index(fast_policy), fast_policy, reranker=_TopTwoReranker())

        response = await service.retrieve("water soil leaves", RetrieveOptions(top_k=6))

        scores = [r.score for r in response.results]
        assert response.reranked
        assert len(response.results) > 2
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)
        head, tail = response.results[:2], response.results[2:]
        assert all(r.source is SearchSource.RERANKED for r in head)
        assert all(r.rerank_score is None and r.source is not SearchSource.RERANKED for r in tail)
        assert all(r.score < head[-1].score for r in tail)
        assert [r.fused_score for r in tail] == sorted((r.fused_score for r in tail), reverse=True)


# ======================================================================
# Validation and cancellation
# ======================================================================


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query_rejected(self, fast_policy: RetryPolicy, query: str) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        with pytest.raises(ValidationError):
            await service.retrieve(query)

    @pytest.mark.asyncio
    async def test_top_k_must_be_positive(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        with pytest.raises(ValidationError, match="top_k"):
            await service.retrieve("water", RetrieveOptions(top_k=0))

    @pytest.mark.asyncio
    async def test_unsupported_filter_rejected(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        with pytest.raises(ValidationError):
            await service.retrieve("water", RetrieveOptions(filters={"course_id": {"$like": "bio%"}}))

    @pytest.mark.asyncio
    async def test_cancelled_query_raises(self, fast_policy: RetryPolicy) -> None:
        service = _service(await _seeded_index(fast_policy), fast_policy)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IngestionCancelledError):
            await service.retrieve("water", cancel_token=token)
