"""Shared pytest fixtures for the course_rag test suite."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any

import pytest

from course_rag.config.settings import Settings
from course_rag.interfaces.embedding_client import IEmbeddingClient
from course_rag.interfaces.reranker import IReranker
from course_rag.main import build_core
from course_rag.models.retrieval import IndexedEntry, SearchHit
from course_rag.pipeline.core import RAGCore
from course_rag.providers.keyword.bm25_index import BM25KeywordIndex
from course_rag.providers.vector_store.memory_store import InMemoryVectorStore
from course_rag.utils.errors import (
    EmbeddingServiceError,
    KeywordIndexError,
    RerankServiceError,
    VectorStoreError,
)
from course_rag.utils.retry import RetryPolicy

TEST_DIMENSION = 64

_TERM_RE = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class HashEmbeddingClient(IEmbeddingClient):
    """Deterministic bag-of-words embedding: texts sharing words point the same way."""

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str], *, is_query: bool = False) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for term in _TERM_RE.findall(text.lower()):
            bucket = int(hashlib.md5(term.encode("utf-8")).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return "hash-bow-v1"

    def get_provider_name(self) -> str:
        return "hash_embedding"

    def is_available(self) -> bool:
        return True


class FailingEmbeddingClient(HashEmbeddingClient):
    """Fails any batch containing a text that matches *fail_marker*.

    With no marker every call fails.
    """

    def __init__(
        self,
        dimension: int = TEST_DIMENSION,
        fail_marker: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(dimension)
        self._fail_marker = fail_marker
        self._retryable = retryable

    async def embed(self, texts: list[str], *, is_query: bool = False) -> list[list[float]]:
        self.calls.append(list(texts))
        if self._fail_marker is None or any(self._fail_marker in t for t in texts):
            raise EmbeddingServiceError(
                message="HTTP 503: service unavailable",
                provider_name=self.get_provider_name(),
                retryable=self._retryable,
            )
        return [self._vector(t) for t in texts]


class FlakyKeywordIndex(BM25KeywordIndex):
    """BM25 index whose reads and/or writes can be switched to fail."""

    def __init__(self, fail_search: bool = False, fail_index: bool = False) -> None:
        super().__init__()
        self.fail_search = fail_search
        self.fail_index = fail_index
        self.fail_delete = False

    async def index(self, entries: list[IndexedEntry]) -> list[str]:
        if self.fail_index:
            raise KeywordIndexError(message="index write failed", provider_name="bm25")
        return await super().index(entries)

    async def search(
        self, query: str, filters: dict[str, Any] | None = None, top_k: int = 10
    ) -> list[SearchHit]:
        if self.fail_search:
            raise KeywordIndexError(message="keyword search failed", provider_name="bm25")
        return await super().search(query, filters, top_k)

    async def delete_by_document(self, document_id: str) -> list[str]:
        if self.fail_delete:
            raise KeywordIndexError(message="delete failed", provider_name="bm25")
        return await super().delete_by_document(document_id)

    async def delete_by_ids(self, ids: list[str]) -> int:
        if self.fail_delete:
            raise KeywordIndexError(message="delete failed", provider_name="bm25")
        return await super().delete_by_ids(ids)


class FlakyVectorStore(InMemoryVectorStore):
    """In-memory store whose searches can be switched to fail."""

    def __init__(self, fail_search: bool = False) -> None:
        super().__init__()
        self.fail_search = fail_search

    async def search(
        self, vector: list[float], filters: dict[str, Any] | None = None, top_k: int = 10
    ) -> list[SearchHit]:
        if self.fail_search:
            raise VectorStoreError(message="vector search failed", provider_name="memory")
        return await super().search(vector, filters, top_k)


class OverlapReranker(IReranker):
    """Scores passages by the share of query terms they contain."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, list[str]]] = []

    async def rerank(
        self, query: str, texts: list[str], top_n: int | None = None
    ) -> list[tuple[int, float]]:
        self.calls.append((query, list(texts)))
        if self.fail:
            raise RerankServiceError(
                message="rerank timed out", provider_name="overlap_reranker", retryable=False
            )
        terms = set(_TERM_RE.findall(query.lower()))
        scored = []
        for i, text in enumerate(texts):
            words = set(_TERM_RE.findall(text.lower()))
            scored.append((i, len(terms & words) / max(1, len(terms))))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:top_n] if top_n else scored

    def get_provider_name(self) -> str:
        return "overlap_reranker"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Settings, policies and assembled cores
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with no backoff so failure tests run instantly."""
    return RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=0.0, timeout=5.0)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        vector_dimension=TEST_DIMENSION,
        vector_store_provider="memory",
        embedding_provider="",
        rerank_enabled=False,
        retry_max_attempts=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
        external_call_timeout=5.0,
        circuit_failure_threshold=3,
        circuit_reset_seconds=60.0,
        ingestion_workers=2,
    )


@pytest.fixture
def core(test_settings: Settings) -> RAGCore:
    """A fully wired core on in-memory stores and the hash embedder."""
    return build_core(
        test_settings,
        embedding_client=HashEmbeddingClient(),
        vector_store=InMemoryVectorStore(),
        configure_logs=False,
    )


# ---------------------------------------------------------------------------
# Sample texts
# ---------------------------------------------------------------------------


@pytest.fixture
def course_text() -> str:
    """Three paragraphs (about 600 words) of plain, well-formed course material."""
    return "\n\n".join([_PARAGRAPH_PLANTS, _PARAGRAPH_WATER, _PARAGRAPH_SOIL])


@pytest.fixture
def short_text() -> str:
    return "Plants need light. They also need water."


_PARAGRAPH_PLANTS = (
    "Plants make their own food from light. This process is called photosynthesis, "
    "and it happens in the green parts of the plant. The leaves take in light from "
    "the sun and use it to turn water and air into sugar. The plant uses this sugar "
    "to grow new leaves, stems and roots. Some of the sugar is stored in the roots "
    "for later use. When there is not enough light, the plant grows slowly and its "
    "leaves may turn pale. Gardeners often move plants closer to a window so the "
    "leaves get more light during the day. In a dark room a plant will bend its "
    "stem toward the nearest source of light. This simple behaviour shows how much "
    "the plant depends on light to make food. Students can test this at home by "
    "placing one plant in a bright spot and another plant in a dark corner. After "
    "two weeks the plant in the bright spot will usually be taller and greener. The "
    "plant in the dark corner will often have thin stems and small leaves. Light is "
    "the first thing a plant needs, but it is not the only thing. Water and good "
    "soil matter just as much, as the next parts of this lesson will explain."
)

_PARAGRAPH_WATER = (
    "Water moves through a plant from the roots to the leaves. The roots take up "
    "water from the soil, and thin tubes inside the stem carry it upward. When the "
    "water reaches the leaves, some of it is used to make food with the help of "
    "light. The rest of the water leaves the plant through tiny holes in the leaves. "
    "This loss of water pulls more water up from the roots, a bit like drinking "
    "through a straw. On a hot day a plant can lose a lot of water, so the soil "
    "around the roots dries out quickly. If the roots cannot find enough water, the "
    "leaves droop and the plant stops growing. Too much water can also harm a plant, "
    "because the roots need air as well as water. Roots that sit in wet soil for a "
    "long time can rot. A good rule for students is to check the soil with a finger "
    "before adding water. If the top of the soil feels dry, the plant probably needs "
    "water. If it still feels damp, it is better to wait another day. Watching the "
    "leaves is another useful habit, since healthy leaves stay firm and green when "
    "the plant has the right amount of water."
)

_PARAGRAPH_SOIL = (
    "Soil gives a plant a place to grow and a supply of food for its roots. Good soil "
    "holds water but also lets extra water drain away. It contains small pieces of "
    "rock, dead leaves and tiny living things that help break the leaves down. As the "
    "dead leaves break down, they release food that the roots can take up with the "
    "water. Many gardeners add compost to their soil for this reason. Compost is made "
    "from old leaves, fruit peels and other plant waste that has been left to rot. "
    "Soil that is packed too hard makes it difficult for roots to spread and find "
    "water. Loose soil lets roots grow deep and strong. Students can compare two pots "
    "of soil by pouring the same amount of water into each one and timing how long "
    "the water takes to drain. The pot with better soil will hold some water and let "
    "the rest drain away. Light, water and soil work together, and a healthy plant "
    "needs all three. When one of them is missing, the leaves, stems and roots will "
    "show the problem, and a careful gardener can learn to read these signs and help "
    "the plant grow well."
)
