"""ChromaDB vector store adapter.

Wraps a ``chromadb`` client to implement :class:`IVectorStore`.  Chunk text
is stored as the Chroma *document* and the rest of the payload as metadata.
Synchronous Chroma calls run via ``asyncio.to_thread`` so a slow disk does
not stall the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any

import chromadb
import structlog

from course_rag.config.constants import DISTANCE_METRICS, PAYLOAD_DOCUMENT_ID
from course_rag.interfaces.vector_store import IVectorStore
from course_rag.models.retrieval import IndexedEntry, SearchHit
from course_rag.utils.errors import ValidationError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_DIMENSION_KEY = "course_rag_dimension"
_SPACE_KEY = "hnsw:space"


class ChromaDBVectorStore(IVectorStore):
    """Vector store backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for ``PersistentClient`` data.  Ignored when *client*
        is given.
    collection_name:
        Name of the collection holding chunk vectors.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()`` in
        tests).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "course_rag_chunks",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection: Any | None = None
        self._metric = "cosine"

    # ------------------------------------------------------------------
    # IVectorStore implementation
    # ------------------------------------------------------------------

    async def ensure_collection(self, dimension: int, metric: str) -> None:
        if metric not in DISTANCE_METRICS:
            raise ValidationError(
                message=f"Unsupported distance metric {metric!r}",
                provider_name=self.get_provider_name(),
            )
        space = DISTANCE_METRICS[metric]
        try:
            collection = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=self._collection_name,
                metadata={_SPACE_KEY: space, _DIMENSION_KEY: dimension},
                # Vectors are always pre-computed; never load a default model.
                embedding_function=None,
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB ensure_collection failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        existing = collection.metadata or {}
        stored_dim = existing.get(_DIMENSION_KEY)
        stored_space = existing.get(_SPACE_KEY, space)
        if stored_dim is not None and int(stored_dim) != dimension:
            raise ValidationError(
                message=(
                    f"Collection {self._collection_name!r} holds {stored_dim}-dim "
                    f"vectors but {dimension} was requested"
                ),
                provider_name=self.get_provider_name(),
            )
        if stored_space != space:
            raise ValidationError(
                message=(
                    f"Collection {self._collection_name!r} uses {stored_space!r} "
                    f"distance but {space!r} was requested"
                ),
                provider_name=self.get_provider_name(),
            )

        self._collection = collection
        self._metric = metric
        logger.info(
            "chromadb_collection_ready",
            collection=self._collection_name,
            dimension=dimension,
            metric=metric,
        )

    async def upsert(self, entries: list[IndexedEntry]) -> list[str]:
        if not entries:
            return []
        collection = self._require_collection()
        ids = [e.vector_id for e in entries]
        try:
            await asyncio.to_thread(
                collection.upsert,
                ids=ids,
                embeddings=[e.vector for e in entries],
                documents=[e.text for e in entries],
                metadatas=[self._payload_to_metadata(e.payload) for e in entries],
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("chromadb_upsert", count=len(ids))
        return ids

    async def search(
        self,
        vector: list[float],
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        collection = self._require_collection()
        try:
            total = await asyncio.to_thread(collection.count)
            if total == 0:
                return []
            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": min(top_k, total),
                "include": ["documents", "metadatas", "distances"],
            }
            where = self._translate_filters(filters) if filters else None
            if where:
                kwargs["where"] = where
            results = await asyncio.to_thread(collection.query, **kwargs)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results.get("ids") or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [0.0] * len(ids)

        hits = [
            SearchHit(
                chunk_id=chunk_id,
                text=text or "",
                score=self._distance_to_score(distance),
                payload={**(meta or {}), "text": text or ""},
            )
            for chunk_id, text, meta, distance in zip(
                ids, documents, metadatas, distances, strict=True
            )
        ]
        hits.sort(key=lambda h: (-h.score, h.chunk_id))
        return hits

    async def delete_by_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        collection = self._require_collection()
        try:
            existing = await asyncio.to_thread(collection.get, ids=list(ids), include=[])
            found = list(existing.get("ids") or [])
            if found:
                await asyncio.to_thread(collection.delete, ids=found)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return len(found)

    async def delete_by_document(self, document_id: str) -> list[str]:
        collection = self._require_collection()
        try:
            existing = await asyncio.to_thread(
                collection.get, where={PAYLOAD_DOCUMENT_ID: document_id}, include=[]
            )
            found = list(existing.get("ids") or [])
            if found:
                await asyncio.to_thread(collection.delete, ids=found)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB delete_by_document failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_by_document", document_id=document_id, deleted_count=len(found))
        return found

    async def get_entries(self, ids: list[str]) -> list[IndexedEntry]:
        """Fetch text and metadata for *ids*; vectors are not loaded."""
        if not ids:
            return []
        collection = self._require_collection()
        try:
            found = await asyncio.to_thread(
                collection.get, ids=list(ids), include=["documents", "metadatas"]
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB get failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        found_ids = list(found.get("ids") or [])
        documents = found.get("documents") or [""] * len(found_ids)
        metadatas = found.get("metadatas") or [{}] * len(found_ids)
        return [
            IndexedEntry(vector_id=chunk_id, vector=[], payload={**(meta or {}), "text": text or ""})
            for chunk_id, text, meta in zip(found_ids, documents, metadatas, strict=True)
        ]

    async def list_ids(self, document_id: str | None = None) -> set[str]:
        collection = self._require_collection()
        kwargs: dict[str, Any] = {"include": []}
        if document_id is not None:
            kwargs["where"] = {PAYLOAD_DOCUMENT_ID: document_id}
        try:
            existing = await asyncio.to_thread(collection.get, **kwargs)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB list_ids failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return set(existing.get("ids") or [])

    async def count(self) -> int:
        collection = self._require_collection()
        try:
            return int(await asyncio.to_thread(collection.count))
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        return self._collection is not None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise VectorStoreError(
                message="Collection not initialised; call ensure_collection() first",
                provider_name=self.get_provider_name(),
                retryable=False,
            )
        return self._collection

    def _distance_to_score(self, distance: float) -> float:
        """Convert a Chroma distance into a higher-is-better similarity."""
        if self._metric == "euclidean":
            return 1.0 / (1.0 + float(distance))
        # cosine and ip distances are both 1 - similarity.
        return 1.0 - float(distance)

    @staticmethod
    def _payload_to_metadata(payload: dict[str, Any]) -> dict[str, str | int | float | bool]:
        """Flatten a payload into Chroma-compatible scalar metadata.

        ``text`` is stored as the Chroma document, ``None`` values are
        dropped, and non-scalar values are stringified.
        """
        meta: dict[str, str | int | float | bool] = {}
        for key, value in payload.items():
            if key == "text" or value is None:
                continue
            if isinstance(value, (str, int, float, bool)):
                meta[key] = value
            else:
                meta[key] = str(value)
        return meta

    @staticmethod
    def _translate_filters(filters: dict[str, Any]) -> dict[str, Any] | None:
        """Translate the common filter syntax to a ChromaDB ``where`` clause.

        Plain values become ``$eq``; ``$gte``/``$lte``/``$gt``/``$lt``/``$in``/
        ``$ne``/``$nin`` pass through.  Multiple keys are combined with ``$and``.
        """
        clauses: list[dict[str, Any]] = []
        for key, condition in filters.items():
            if isinstance(condition, dict):
                for op, operand in condition.items():
                    if op in ("$in", "$nin"):
                        operand = list(operand)
                    clauses.append({key: {op: operand}})
            else:
                clauses.append({key: {"$eq": condition}})

        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}
