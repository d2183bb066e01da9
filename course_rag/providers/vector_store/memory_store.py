"""In-process vector store backed by a numpy matrix.

Useful for tests, notebooks and small single-process deployments.  Search
is exact (brute-force) over all stored vectors.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import structlog

from course_rag.config.constants import DISTANCE_METRICS, PAYLOAD_DOCUMENT_ID
from course_rag.interfaces.vector_store import IVectorStore
from course_rag.models.retrieval import IndexedEntry, SearchHit
from course_rag.utils.errors import ValidationError, VectorStoreError
from course_rag.utils.filters import matches_filters, validate_filters

logger = structlog.get_logger(logger_name=__name__)


class InMemoryVectorStore(IVectorStore):
    """Exact-search vector store kept entirely in memory."""

    def __init__(self) -> None:
        self._entries: dict[str, IndexedEntry] = {}
        self._dimension: int | None = None
        self._metric = "cosine"
        self._lock = asyncio.Lock()

    async def ensure_collection(self, dimension: int, metric: str) -> None:
        if metric not in DISTANCE_METRICS:
            raise ValidationError(
                message=f"Unsupported distance metric {metric!r}",
                provider_name=self.get_provider_name(),
            )
        if self._dimension is not None and self._dimension != dimension:
            raise ValidationError(
                message=f"Collection holds {self._dimension}-dim vectors but {dimension} was requested",
                provider_name=self.get_provider_name(),
            )
        if self._entries and self._metric != metric:
            raise ValidationError(
                message=f"Collection uses {self._metric!r} distance but {metric!r} was requested",
                provider_name=self.get_provider_name(),
            )
        self._dimension = dimension
        self._metric = metric

    async def upsert(self, entries: list[IndexedEntry]) -> list[str]:
        self._require_collection()
        async with self._lock:
            for entry in entries:
                if len(entry.vector) != self._dimension:
                    raise ValidationError(
                        message=(
                            f"Vector for {entry.vector_id} has dimension "
                            f"{len(entry.vector)}, expected {self._dimension}"
                        ),
                        provider_name=self.get_provider_name(),
                    )
            for entry in entries:
                self._entries[entry.vector_id] = entry
        return [e.vector_id for e in entries]

    async def search(
        self,
        vector: list[float],
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        self._require_collection()
        validate_filters(filters)
        candidates = [e for e in self._entries.values() if matches_filters(e.payload, filters)]
        if not candidates or top_k <= 0:
            return []

        matrix = np.asarray([e.vector for e in candidates], dtype=np.float64)
        query = np.asarray(vector, dtype=np.float64)
        scores = self._score(matrix, query)

        order = sorted(range(len(candidates)), key=lambda i: (-scores[i], candidates[i].vector_id))
        return [
            SearchHit(
                chunk_id=candidates[i].vector_id,
                text=candidates[i].text,
                score=float(scores[i]),
                payload=dict(candidates[i].payload),
            )
            for i in order[:top_k]
        ]

    async def delete_by_ids(self, ids: list[str]) -> int:
        async with self._lock:
            removed = 0
            for chunk_id in ids:
                if self._entries.pop(chunk_id, None) is not None:
                    removed += 1
        return removed

    async def delete_by_document(self, document_id: str) -> list[str]:
        async with self._lock:
            doomed = sorted(
                cid for cid, e in self._entries.items()
                if e.payload.get(PAYLOAD_DOCUMENT_ID) == document_id
            )
            for chunk_id in doomed:
                del self._entries[chunk_id]
        return doomed

    async def get_entries(self, ids: list[str]) -> list[IndexedEntry]:
        return [self._entries[cid] for cid in ids if cid in self._entries]

    async def list_ids(self, document_id: str | None = None) -> set[str]:
        if document_id is None:
            return set(self._entries)
        return {
            cid for cid, e in self._entries.items()
            if e.payload.get(PAYLOAD_DOCUMENT_ID) == document_id
        }

    async def count(self) -> int:
        return len(self._entries)

    def get_provider_name(self) -> str:
        return "memory_vector_store"

    def is_available(self) -> bool:
        return self._dimension is not None

    def _require_collection(self) -> None:
        if self._dimension is None:
            raise VectorStoreError(
                message="Collection not initialised; call ensure_collection() first",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

    def _score(self, matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
        if self._metric == "dot":
            return matrix @ query
        if self._metric == "euclidean":
            return 1.0 / (1.0 + np.linalg.norm(matrix - query, axis=1))
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0, (matrix @ query) / norms, 0.0)
        return sims
