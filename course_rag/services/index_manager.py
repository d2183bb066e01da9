"""Keeps the vector store and the keyword index in lockstep.

Every write lands in the vector store first and is then mirrored into the
keyword index.  A batch whose keyword mirror fails is rolled back out of
the vector store, so a chunk is either searchable both ways or not at all.
Anything that still slips through (a crash between the two writes, a
failed rollback) is repaired by :meth:`IndexManager.reconcile`.

Only the vector store is durable.  When the manager first opens the
collection it copies vector-side entries the keyword index lacks back into
it, so a restarted process searches and reconciles the corpus it left
behind.  A document whose keyword delete failed stays hidden from keyword
search until a reconcile pass removes its leftovers.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from course_rag.config.constants import PAYLOAD_DOCUMENT_ID
from course_rag.models.ingestion import DeletionResult, UpsertResult
from course_rag.models.retrieval import IndexedEntry, SearchHit
from course_rag.utils.concurrency import CancellationToken, is_cancelled, throttled_gather
from course_rag.utils.errors import (
    CourseRAGError,
    IngestionCancelledError,
    KeywordIndexError,
    ValidationError,
    VectorStoreError,
)
from course_rag.utils.retry import CircuitBreaker, RetryPolicy, guarded_call

if TYPE_CHECKING:
    from course_rag.interfaces.keyword_index import IKeywordIndex
    from course_rag.interfaces.vector_store import IVectorStore

logger = structlog.get_logger(logger_name=__name__)


class IndexManager:
    """Owns the vector collection and its parallel keyword index.

    Parameters
    ----------
    vector_store:
        Dense-vector backend.
    keyword_index:
        Lexical backend mirroring the vector store's entries.
    dimension:
        Fixed vector dimension of the collection.
    metric:
        Distance metric name (``cosine``, ``dot`` or ``euclidean``).
    policy:
        Retry and timeout policy for every store call.
    batch_size:
        Entries per write request.
    concurrency:
        Write batches in flight at once.
    """

    def __init__(
        self,
        vector_store: IVectorStore,
        keyword_index: IKeywordIndex,
        dimension: int,
        metric: str = "cosine",
        policy: RetryPolicy | None = None,
        vector_breaker: CircuitBreaker | None = None,
        keyword_breaker: CircuitBreaker | None = None,
        batch_size: int = 100,
        concurrency: int = 5,
    ) -> None:
        self._vector_store = vector_store
        self._keyword_index = keyword_index
        self._dimension = dimension
        self._metric = metric
        self._policy = policy or RetryPolicy()
        self._vector_breaker = vector_breaker or CircuitBreaker(
            name=vector_store.get_provider_name()
        )
        self._keyword_breaker = keyword_breaker or CircuitBreaker(
            name=keyword_index.get_provider_name()
        )
        self._batch_size = max(1, batch_size)
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._collection_ready = False
        self._keyword_restored = False
        self._open_lock = asyncio.Lock()
        # document_id -> chunk ids removed from the vector store whose keyword
        # delete has not succeeded yet.
        self._pending_deletes: dict[str, set[str]] = {}

    @property
    def vector_store(self) -> IVectorStore:
        return self._vector_store

    @property
    def keyword_index(self) -> IKeywordIndex:
        return self._keyword_index

    @property
    def vector_breaker(self) -> CircuitBreaker:
        return self._vector_breaker

    @property
    def keyword_breaker(self) -> CircuitBreaker:
        return self._keyword_breaker

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def metric(self) -> str:
        return self._metric

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    async def ensure_collection(self) -> None:
        """Open the vector collection and bring the keyword index up to it.

        The first call creates the collection if absent, then indexes every
        stored chunk the keyword index does not hold yet.  Later calls return
        immediately.

        Raises :class:`ValidationError` when an existing collection was
        created with a different dimension or metric, and the store's typed
        error when either side cannot be read.  A failed restore is retried
        on the next call.
        """
        if self._collection_ready and self._keyword_restored:
            return
        async with self._open_lock:
            await self._open_collection()
            if not self._keyword_restored:
                await self._restore_keyword_index()
                self._keyword_restored = True

    async def _open_collection(self) -> None:
        if self._collection_ready:
            return
        await self._vector_call(
            lambda: self._vector_store.ensure_collection(self._dimension, self._metric),
            "ensure_collection",
        )
        self._collection_ready = True
        logger.info(
            "collection_ready",
            provider=self._vector_store.get_provider_name(),
            dimension=self._dimension,
            metric=self._metric,
        )

    async def _restore_keyword_index(self) -> int:
        """Index vector-side chunks missing from the keyword index."""
        vector_ids = await self._vector_call(self._vector_store.list_ids, "list_ids")
        keyword_ids = await self._keyword_call(self._keyword_index.list_ids, "list_ids")
        missing = sorted(vector_ids - keyword_ids)
        for start in range(0, len(missing), self._batch_size):
            batch_ids = missing[start : start + self._batch_size]
            entries = await self._vector_call(
                lambda ids=batch_ids: self._vector_store.get_entries(ids), "get_entries"
            )
            if entries:
                await self._keyword_call(
                    lambda batch=entries: self._keyword_index.index(batch), "restore"
                )
        if missing:
            logger.info(
                "keyword_index_restored",
                provider=self._keyword_index.get_provider_name(),
                restored=len(missing),
                stored=len(vector_ids),
            )
        return len(missing)

    async def check_vector_store(self) -> bool:
        """Open the collection if needed, then check the store.  Never raises."""
        try:
            await self._open_collection()
        except Exception as exc:
            logger.warning("vector_store_check_failed", error=str(exc))
            return False
        return await self._vector_store.check_health()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        entries: list[IndexedEntry],
        cancel_token: CancellationToken | None = None,
    ) -> UpsertResult:
        """Write *entries* to both indices in concurrent batches.

        Raises
        ------
        ValidationError
            If any vector has the wrong dimension.  Nothing is written.
        IngestionCancelledError
            If *cancel_token* fires; batches already in flight finish first.
        """
        if not entries:
            return UpsertResult()
        for entry in entries:
            if len(entry.vector) != self._dimension:
                raise ValidationError(
                    message=f"Vector for chunk {entry.vector_id} has dimension "
                    f"{len(entry.vector)}, collection expects {self._dimension}"
                )
        await self.ensure_collection()

        batches = [
            entries[i : i + self._batch_size]
            for i in range(0, len(entries), self._batch_size)
        ]
        outcomes = await throttled_gather(
            [self._upsert_batch(batch, cancel_token) for batch in batches],
            self._semaphore,
        )

        upserted: list[str] = []
        failed: list[str] = []
        errors: list[str] = []
        for batch, outcome in zip(batches, outcomes):
            ids = [e.vector_id for e in batch]
            if isinstance(outcome, BaseException):
                failed.extend(ids)
                if not isinstance(outcome, IngestionCancelledError):
                    errors.append(str(outcome))
            else:
                upserted.extend(ids)
                for entry in batch:
                    self._pending_deletes.pop(entry.document_id, None)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        logger.info(
            "index_upsert_complete",
            entries=len(entries),
            batches=len(batches),
            upserted=len(upserted),
            failed=len(failed),
        )
        return UpsertResult(upserted_ids=upserted, failed_ids=failed, errors=errors)

    async def delete_document(self, document_id: str) -> DeletionResult:
        """Remove every chunk of *document_id* from both indices.

        A vector-store failure propagates; nothing has been removed from the
        keyword side at that point.  When the keyword delete fails after its
        retry budget, the document is hidden from keyword search and a
        reconcile pass for it runs at once.  If that also fails the result
        has ``reconciled=False`` and the document stays hidden until a later
        :meth:`reconcile` succeeds.
        """
        await self.ensure_collection()
        vector_ids = await self._vector_call(
            lambda: self._vector_store.delete_by_document(document_id),
            "delete_document",
        )
        keyword_ids: list[str] = []
        try:
            keyword_ids = await self._keyword_call(
                lambda: self._keyword_index.delete_by_document(document_id),
                "delete_document",
            )
        except Exception as exc:
            self._pending_deletes[document_id] = set(vector_ids)
            logger.error(
                "keyword_delete_failed",
                document_id=document_id,
                hidden_chunks=len(vector_ids),
                error=str(exc),
            )
            await self._retry_pending_delete(document_id)

        reconciled = await self._fully_removed(document_id)
        removed = len(set(vector_ids) | set(keyword_ids))
        logger.info(
            "document_deleted",
            document_id=document_id,
            removed_chunks=removed,
            reconciled=reconciled,
        )
        return DeletionResult(
            document_id=document_id,
            removed_chunks=removed,
            reconciled=reconciled,
        )

    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        """Remove specific chunks from both indices; return how many existed."""
        if not chunk_ids:
            return 0
        await self.ensure_collection()
        removed = await self._vector_call(
            lambda: self._vector_store.delete_by_ids(chunk_ids), "delete_chunks"
        )
        keyword_removed = await self._keyword_call(
            lambda: self._keyword_index.delete_by_ids(chunk_ids), "delete_chunks"
        )
        return max(removed, keyword_removed)

    async def reconcile(self, document_id: str | None = None) -> list[str]:
        """Remove entries present in only one index; return the repaired ids."""
        await self.ensure_collection()
        vector_ids = await self._vector_call(
            lambda: self._vector_store.list_ids(document_id), "list_ids"
        )
        keyword_ids = await self._keyword_call(
            lambda: self._keyword_index.list_ids(document_id), "list_ids"
        )

        vector_only = sorted(vector_ids - keyword_ids)
        keyword_only = sorted(keyword_ids - vector_ids)
        if vector_only:
            await self._vector_call(
                lambda: self._vector_store.delete_by_ids(vector_only), "reconcile"
            )
        if keyword_only:
            await self._keyword_call(
                lambda: self._keyword_index.delete_by_ids(keyword_only), "reconcile"
            )

        if document_id is None:
            self._pending_deletes.clear()
        else:
            self._pending_deletes.pop(document_id, None)

        orphans = sorted(vector_only + keyword_only)
        if orphans:
            logger.warning(
                "index_orphans_removed",
                document_id=document_id,
                vector_only=len(vector_only),
                keyword_only=len(keyword_only),
            )
        return orphans

    async def document_chunk_ids(self, document_id: str) -> set[str]:
        """Ids of *document_id* in either index."""
        await self.ensure_collection()
        vector_ids = await self._vector_call(
            lambda: self._vector_store.list_ids(document_id), "list_ids"
        )
        keyword_ids = await self._keyword_call(
            lambda: self._keyword_index.list_ids(document_id), "list_ids"
        )
        return vector_ids | keyword_ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        vector: list[float],
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        if len(vector) != self._dimension:
            raise ValidationError(
                message=f"Query vector has dimension {len(vector)}, "
                f"collection expects {self._dimension}"
            )
        await self.ensure_collection()
        return await self._vector_call(
            lambda: self._vector_store.search(vector, filters, top_k), "search"
        )

    async def search_keyword(
        self,
        query: str,
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        """BM25 search over live chunks.

        Chunks of documents with a pending delete are dropped from the hits.
        If the collection cannot be opened the keyword index is searched as
        it stands, so keyword-only retrieval survives a vector-store outage.
        """
        try:
            await self.ensure_collection()
        except CourseRAGError as exc:
            logger.warning("keyword_search_without_restore", error=str(exc))

        hidden = set().union(*self._pending_deletes.values()) if self._pending_deletes else set()
        hits = await self._keyword_call(
            lambda: self._keyword_index.search(query, filters, top_k + len(hidden)),
            "search_keyword",
        )
        if not self._pending_deletes:
            return hits
        visible = [
            hit
            for hit in hits
            if hit.chunk_id not in hidden
            and hit.payload.get(PAYLOAD_DOCUMENT_ID) not in self._pending_deletes
        ]
        return visible[:top_k]

    async def count(self) -> int:
        await self.ensure_collection()
        return await self._vector_call(self._vector_store.count, "count")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _upsert_batch(
        self, batch: list[IndexedEntry], cancel_token: CancellationToken | None
    ) -> list[str]:
        if is_cancelled(cancel_token):
            raise IngestionCancelledError(message=cancel_token.reason or "Indexing cancelled")

        ids = await self._vector_call(
            lambda: self._vector_store.upsert(batch), "upsert"
        )
        try:
            await self._keyword_call(
                lambda: self._keyword_index.index(batch), "index"
            )
        except Exception:
            await self._rollback(ids)
            raise
        return ids

    async def _rollback(self, ids: list[str]) -> None:
        """Undo a vector write whose keyword mirror failed."""
        try:
            await self._vector_call(
                lambda: self._vector_store.delete_by_ids(ids), "rollback"
            )
        except Exception as exc:
            # Left for reconcile() to clean up.
            logger.error("index_rollback_failed", chunk_ids=len(ids), error=str(exc))
            return
        logger.warning("index_batch_rolled_back", chunk_ids=len(ids))

    async def _retry_pending_delete(self, document_id: str) -> None:
        try:
            repaired = await self.reconcile(document_id)
        except Exception as exc:
            logger.warning(
                "pending_delete_retry_failed", document_id=document_id, error=str(exc)
            )
            return
        logger.info(
            "pending_delete_repaired", document_id=document_id, removed=len(repaired)
        )

    async def _fully_removed(self, document_id: str) -> bool:
        try:
            return not await self.document_chunk_ids(document_id)
        except Exception as exc:
            logger.warning(
                "post_delete_check_failed", document_id=document_id, error=str(exc)
            )
            return False

    async def _vector_call(self, fn, operation: str):
        return await guarded_call(
            fn,
            policy=self._policy,
            breaker=self._vector_breaker,
            operation=f"vector_{operation}",
            provider_name=self._vector_store.get_provider_name(),
            error_cls=VectorStoreError,
        )

    async def _keyword_call(self, fn, operation: str):
        return await guarded_call(
            fn,
            policy=self._policy,
            breaker=self._keyword_breaker,
            operation=f"keyword_{operation}",
            provider_name=self._keyword_index.get_provider_name(),
            error_cls=KeywordIndexError,
        )
