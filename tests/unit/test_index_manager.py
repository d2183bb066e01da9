"""Unit tests for IndexManager -- lockstep writes, rollback, deletion, reconcile."""

from __future__ import annotations

import pytest
import pytest_asyncio

from course_rag.models.document import make_chunk_id
from course_rag.models.retrieval import IndexedEntry
from course_rag.providers.keyword.bm25_index import BM25KeywordIndex
from course_rag.providers.vector_store.memory_store import InMemoryVectorStore
from course_rag.services.index_manager import IndexManager
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import (
    IngestionCancelledError,
    KeywordIndexError,
    ValidationError,
    VectorStoreError,
)
from course_rag.utils.retry import CircuitBreaker, RetryPolicy
from tests.conftest import TEST_DIMENSION, FlakyKeywordIndex, FlakyVectorStore

_TEXTS = [
    "roots take up water from the soil",
    "leaves turn light into sugar",
    "compost feeds the soil",
    "stems carry water to the leaves",
]


def _vector(i: int) -> list[float]:
    vector = [0.0] * TEST_DIMENSION
    vector[i % TEST_DIMENSION] = 1.0
    return vector


def _entries(document_id: str = "doc", n: int = 4) -> list[IndexedEntry]:
    return [
        IndexedEntry(
            vector_id=make_chunk_id(document_id, i),
            vector=_vector(i),
            payload={
                "document_id": document_id,
                "text": _TEXTS[i % len(_TEXTS)],
                "chunk_index": i,
                "language": "en",
            },
        )
        for i in range(n)
    ]


def _manager(
    policy: RetryPolicy,
    vector_store=None,
    keyword_index=None,
    batch_size: int = 100,
) -> IndexManager:
    return IndexManager(
        vector_store or InMemoryVectorStore(),
        keyword_index or BM25KeywordIndex(),
        dimension=TEST_DIMENSION,
        policy=policy,
        vector_breaker=CircuitBreaker("vector", failure_threshold=10),
        keyword_breaker=CircuitBreaker("keyword", failure_threshold=10),
        batch_size=batch_size,
    )


class TestUpsert:
    @pytest.mark.asyncio
    async def test_writes_both_indices(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy, batch_size=3)
        entries = _entries()

        result = await manager.upsert(entries)

        ids = {e.vector_id for e in entries}
        assert set(result.upserted_ids) == ids
        assert result.failed_ids == []
        assert await manager.vector_store.list_ids() == ids
        assert await manager.keyword_index.list_ids() == ids
        assert await manager.count() == 4

    @pytest.mark.asyncio
    async def test_dimension_mismatch_writes_nothing(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        bad = IndexedEntry(vector_id="x", vector=[1.0, 0.0], payload={"document_id": "doc"})

        with pytest.raises(ValidationError, match="dimension"):
            await manager.upsert([*_entries(), bad])
        assert await manager.keyword_index.list_ids() == set()

    @pytest.mark.asyncio
    async def test_keyword_failure_rolls_back_vector_write(self, fast_policy: RetryPolicy) -> None:
        keyword = FlakyKeywordIndex(fail_index=True)
        manager = _manager(fast_policy, keyword_index=keyword)

        result = await manager.upsert(_entries())

        assert result.upserted_ids == []
        assert len(result.failed_ids) == 4
        assert "index write failed" in result.errors[0]
        assert await manager.vector_store.list_ids() == set()
        assert await keyword.list_ids() == set()

    @pytest.mark.asyncio
    async def test_cancelled_upsert_raises(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IngestionCancelledError):
            await manager.upsert(_entries(), cancel_token=token)
        assert await manager.keyword_index.list_ids() == set()

    @pytest.mark.asyncio
    async def test_re_upsert_replaces_entries(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        await manager.upsert(_entries())
        await manager.upsert(_entries())
        assert await manager.count() == 4


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_document_removes_from_both(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        await manager.upsert(_entries("doc-a") + _entries("doc-b", n=2))

        result = await manager.delete_document("doc-a")

        assert result.removed_chunks == 4
        assert result.reconciled
        assert await manager.document_chunk_ids("doc-a") == set()
        assert len(await manager.document_chunk_ids("doc-b")) == 2

    @pytest.mark.asyncio
    async def test_delete_unknown_document_is_a_no_op(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        await manager.ensure_collection()

        result = await manager.delete_document("missing")

        assert result.removed_chunks == 0
        assert result.reconciled

    @pytest.mark.asyncio
    async def test_failed_keyword_delete_hides_document(self, fast_policy: RetryPolicy) -> None:
        keyword = FlakyKeywordIndex()
        manager = _manager(fast_policy, keyword_index=keyword)
        await manager.upsert(_entries("doc") + _entries("other", n=2))
        keyword.fail_delete = True

        result = await manager.delete_document("doc")

        assert result.removed_chunks == 4
        assert not result.reconciled
        assert await manager.vector_store.list_ids("doc") == set()
        assert len(await keyword.list_ids("doc")) == 4
        hits = await manager.search_keyword("water soil leaves", top_k=10)
        assert hits
        assert {h.payload["document_id"] for h in hits} == {"other"}

        keyword.fail_delete = False
        orphans = await manager.reconcile()

        assert len(orphans) == 4
        assert await keyword.list_ids("doc") == set()
        assert len(await manager.search_keyword("water soil leaves", top_k=10)) == len(hits)

    @pytest.mark.asyncio
    async def test_failed_document_delete_repaired_by_id(self, fast_policy: RetryPolicy) -> None:
        class _NoDocumentDelete(BM25KeywordIndex):
            async def delete_by_document(self, document_id: str) -> list[str]:
                raise KeywordIndexError(message="delete failed", provider_name="bm25")

        keyword = _NoDocumentDelete()
        manager = _manager(fast_policy, keyword_index=keyword)
        await manager.upsert(_entries())

        result = await manager.delete_document("doc")

        assert result.reconciled
        assert await keyword.list_ids() == set()
        assert await manager.search_keyword("soil") == []

    @pytest.mark.asyncio
    async def test_reingest_clears_hidden_document(self, fast_policy: RetryPolicy) -> None:
        keyword = FlakyKeywordIndex()
        manager = _manager(fast_policy, keyword_index=keyword)
        await manager.upsert(_entries())
        keyword.fail_delete = True
        await manager.delete_document("doc")
        keyword.fail_delete = False

        await manager.upsert(_entries())

        hits = await manager.search_keyword("soil")
        assert hits
        assert all(h.payload["document_id"] == "doc" for h in hits)

    @pytest.mark.asyncio
    async def test_delete_on_fresh_manager_over_stored_collection(
        self, fast_policy: RetryPolicy
    ) -> None:
        store = InMemoryVectorStore()
        await store.ensure_collection(TEST_DIMENSION, "cosine")
        await store.upsert(_entries())
        manager = _manager(fast_policy, vector_store=store)

        result = await manager.delete_document("doc")

        assert result.removed_chunks == 4
        assert result.reconciled
        assert await store.list_ids() == set()

    @pytest.mark.asyncio
    async def test_delete_chunks(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        entries = _entries()
        await manager.upsert(entries)

        removed = await manager.delete_chunks([entries[0].vector_id, "missing"])

        assert removed == 1
        assert entries[0].vector_id not in await manager.keyword_index.list_ids()


class TestReconcile:
    @pytest.mark.asyncio
    async def test_removes_one_sided_entries(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        entries = _entries()
        await manager.upsert(entries)
        # Simulate a crash between the two writes, in both directions.
        await manager.keyword_index.delete_by_ids([entries[0].vector_id])
        await manager.vector_store.delete_by_ids([entries[1].vector_id])

        orphans = await manager.reconcile()

        assert orphans == sorted([entries[0].vector_id, entries[1].vector_id])
        expected = {entries[2].vector_id, entries[3].vector_id}
        assert await manager.vector_store.list_ids() == expected
        assert await manager.keyword_index.list_ids() == expected

    @pytest.mark.asyncio
    async def test_consistent_indices_have_no_orphans(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        await manager.upsert(_entries())
        assert await manager.reconcile("doc") == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_vector_search(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        entries = _entries()
        await manager.upsert(entries)

        hits = await manager.search(_vector(2), top_k=2)

        assert hits[0].chunk_id == entries[2].vector_id
        assert hits[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_query_dimension_checked(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        with pytest.raises(ValidationError):
            await manager.search([1.0, 0.0])

    @pytest.mark.asyncio
    async def test_keyword_search_with_filters(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy)
        await manager.upsert(_entries("doc-a") + _entries("doc-b"))

        hits = await manager.search_keyword("soil", filters={"document_id": "doc-b"})

        assert hits
        assert all(h.payload["document_id"] == "doc-b" for h in hits)
        assert all("soil" in h.text for h in hits)

    @pytest.mark.asyncio
    async def test_vector_failure_is_typed(self, fast_policy: RetryPolicy) -> None:
        manager = _manager(fast_policy, vector_store=FlakyVectorStore(fail_search=True))
        with pytest.raises(VectorStoreError):
            await manager.search(_vector(0))

    @pytest.mark.asyncio
    async def test_mismatched_existing_collection_rejected(self, fast_policy: RetryPolicy) -> None:
        store = InMemoryVectorStore()
        await store.ensure_collection(TEST_DIMENSION * 2, "cosine")
        manager = _manager(fast_policy, vector_store=store)

        with pytest.raises(ValidationError):
            await manager.ensure_collection()


class TestKeywordRestore:
    @pytest_asyncio.fixture
    async def stored(self) -> InMemoryVectorStore:
        store = InMemoryVectorStore()
        await store.ensure_collection(TEST_DIMENSION, "cosine")
        await store.upsert(_entries("doc-a") + _entries("doc-b", n=2))
        return store

    @pytest.mark.asyncio
    async def test_keyword_search_sees_stored_chunks(
        self, fast_policy: RetryPolicy, stored: InMemoryVectorStore
    ) -> None:
        manager = _manager(fast_policy, vector_store=stored, batch_size=2)

        hits = await manager.search_keyword("compost soil", top_k=10)

        assert hits
        assert hits[0].text == "compost feeds the soil"
        assert await manager.keyword_index.list_ids() == await stored.list_ids()

    @pytest.mark.asyncio
    async def test_reconcile_keeps_stored_corpus(
        self, fast_policy: RetryPolicy, stored: InMemoryVectorStore
    ) -> None:
        manager = _manager(fast_policy, vector_store=stored)

        assert await manager.reconcile() == []
        assert await manager.count() == 6

    @pytest.mark.asyncio
    async def test_restore_skips_chunks_already_indexed(
        self, fast_policy: RetryPolicy, stored: InMemoryVectorStore
    ) -> None:
        keyword = FlakyKeywordIndex()
        await keyword.index(_entries("doc-a"))
        manager = _manager(fast_policy, vector_store=stored, keyword_index=keyword)

        await manager.ensure_collection()

        assert await keyword.list_ids() == await stored.list_ids()

    @pytest.mark.asyncio
    async def test_failed_restore_is_retried(
        self, fast_policy: RetryPolicy, stored: InMemoryVectorStore
    ) -> None:
        keyword = FlakyKeywordIndex(fail_index=True)
        manager = _manager(fast_policy, vector_store=stored, keyword_index=keyword)

        with pytest.raises(KeywordIndexError):
            await manager.ensure_collection()

        keyword.fail_index = False
        await manager.ensure_collection()
        assert len(await keyword.list_ids()) == 6

    @pytest.mark.asyncio
    async def test_keyword_search_survives_unopenable_collection(
        self, fast_policy: RetryPolicy
    ) -> None:
        class _ClosedStore(InMemoryVectorStore):
            async def ensure_collection(self, dimension: int, metric: str) -> None:
                raise VectorStoreError(message="store offline", provider_name="memory")

        keyword = BM25KeywordIndex()
        await keyword.index(_entries())
        manager = _manager(fast_policy, vector_store=_ClosedStore(), keyword_index=keyword)

        hits = await manager.search_keyword("soil")

        assert hits
