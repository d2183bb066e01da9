"""RAGCore -- the single entry point external callers use.

Wraps the ingestion and retrieval services, the index manager and the
worker pool behind five operations: ``ingest``, ``ingest_many``,
``retrieve``, ``delete_document`` and ``health_check``.  All collaborators
are injected; :func:`course_rag.main.build_core` assembles them from
settings.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from course_rag.models.document import Document
from course_rag.models.ingestion import (
    DeletionResult,
    HealthReport,
    HealthStatus,
    IngestionReport,
    IngestionStatus,
    IngestOptions,
    ServiceStatus,
)
from course_rag.models.retrieval import RetrievalResponse, RetrieveOptions
from course_rag.pipeline.worker_pool import IngestionWorkerPool
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import ValidationError
from course_rag.utils.retry import CircuitBreaker

if TYPE_CHECKING:
    from course_rag.config.settings import Settings
    from course_rag.services.embedding_orchestrator import EmbeddingOrchestrator
    from course_rag.services.index_manager import IndexManager
    from course_rag.services.ingestion_service import IngestionService
    from course_rag.services.retrieval_service import RetrievalService

logger = structlog.get_logger(logger_name=__name__)

_HEALTH_CHECK_TIMEOUT = 10.0


class RAGCore:
    """Facade over ingestion, retrieval and index maintenance.

    Parameters
    ----------
    ingestion:
        Per-document ingestion pipeline.
    retrieval:
        Hybrid retrieval engine.
    index:
        Index manager shared by both services.
    embedder:
        Embedding orchestrator shared by both services.
    settings:
        Source of defaults (``default_top_k``, ``ingestion_workers``) and of
        the values reported by :meth:`stats`.
    """

    def __init__(
        self,
        ingestion: IngestionService,
        retrieval: RetrievalService,
        index: IndexManager,
        embedder: EmbeddingOrchestrator,
        settings: Settings | None = None,
    ) -> None:
        self._ingestion = ingestion
        self._retrieval = retrieval
        self._index = index
        self._embedder = embedder
        self._settings = settings
        self._default_top_k = settings.default_top_k if settings else 10
        self._workers = settings.ingestion_workers if settings else 4

    async def __aenter__(self) -> RAGCore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        document: Document,
        options: IngestOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> IngestionReport:
        """Ingest one document; see :class:`IngestionService`."""
        return await self._ingestion.ingest(document, options, cancel_token)

    async def ingest_many(
        self,
        documents: list[Document],
        options: IngestOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[IngestionReport]:
        """Ingest *documents* as independent jobs on the worker pool.

        One report per document, in input order.  A document whose job
        raised (including cancellation) gets a ``rejected`` report naming
        the error; the others are unaffected.

        Raises
        ------
        ValidationError
            If any document id is empty or repeated, or the options are
            inconsistent.  Checked before any job starts.
        """
        if not documents:
            return []
        seen: set[str] = set()
        for document in documents:
            self._ingestion.validate_request(document, options)
            if document.document_id in seen:
                raise ValidationError(
                    message=f"Document {document.document_id!r} appears more than once in the batch"
                )
            seen.add(document.document_id)
        async with IngestionWorkerPool(
            self._ingestion.ingest, workers=self._workers, cancel_token=cancel_token
        ) as pool:
            outcomes = await pool.run(documents, options)

        reports: list[IngestionReport] = []
        for outcome in outcomes:
            if outcome.report is not None:
                reports.append(outcome.report)
            else:
                reports.append(
                    IngestionReport(
                        document_id=outcome.document_id,
                        status=IngestionStatus.REJECTED,
                        reason=str(outcome.error),
                    )
                )
        logger.info(
            "batch_ingestion_complete",
            documents=len(documents),
            ingested=sum(1 for r in reports if r.status is IngestionStatus.INGESTED),
            partial=sum(1 for r in reports if r.status is IngestionStatus.PARTIAL),
            rejected=sum(1 for r in reports if r.status is IngestionStatus.REJECTED),
        )
        return reports

    # ------------------------------------------------------------------
    # Retrieval and maintenance
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        options: RetrieveOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RetrievalResponse:
        options = options or RetrieveOptions(top_k=self._default_top_k)
        return await self._retrieval.retrieve(query, options, cancel_token)

    async def delete_document(self, document_id: str) -> DeletionResult:
        if not document_id:
            raise ValidationError(message="document_id must not be empty")
        return await self._index.delete_document(document_id)

    async def reconcile(self) -> list[str]:
        """Remove entries present in only one of the two indices."""
        return await self._index.reconcile()

    # ------------------------------------------------------------------
    # Health and introspection
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthReport:
        """Check every collaborator concurrently.  Never raises.

        ``unhealthy`` when embedding is down (nothing can be ingested) or
        both search paths are down; ``degraded`` when anything else is not
        healthy.  An unconfigured reranker does not degrade the verdict.
        """
        client = self._embedder.client
        reranker = self._retrieval.reranker
        details: dict[str, str] = {}

        embedding, vector, keyword, rerank = await asyncio.gather(
            _run_check(
                "embedding_service",
                client.is_available(),
                self._embedder.breaker,
                client.check_health,
                details,
            ),
            _run_check(
                "vector_store",
                True,
                self._index.vector_breaker,
                self._index.check_vector_store,
                details,
            ),
            _run_check(
                "keyword_index",
                self._index.keyword_index.is_available(),
                self._index.keyword_breaker,
                self._index.keyword_index.check_health,
                details,
            ),
            _run_check(
                "rerank_service",
                reranker is not None and reranker.is_available(),
                self._retrieval.rerank_breaker,
                reranker.check_health if reranker is not None else None,
                details,
            ),
        )

        healthy = ServiceStatus.HEALTHY
        if embedding is not healthy or (vector is not healthy and keyword is not healthy):
            status = HealthStatus.UNHEALTHY
        elif vector is not healthy or keyword is not healthy or rerank not in (
            healthy,
            ServiceStatus.NOT_CONFIGURED,
        ):
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        report = HealthReport(
            status=status,
            embedding_service=embedding,
            vector_store=vector,
            keyword_index=keyword,
            rerank_service=rerank,
            details=details,
        )
        logger.info(
            "health_check_complete",
            status=status.value,
            embedding=embedding.value,
            vector_store=vector.value,
            keyword_index=keyword.value,
            rerank=rerank.value,
        )
        return report

    def stats(self) -> dict[str, Any]:
        """Configuration and component state for operators."""
        settings = self._settings
        return {
            "embedding_provider": self._embedder.client.get_provider_name(),
            "embedding_model": self._embedder.client.get_model_name(),
            "vector_store": self._index.vector_store.get_provider_name(),
            "keyword_index": self._index.keyword_index.get_provider_name(),
            "reranker": (
                self._retrieval.reranker.get_provider_name()
                if self._retrieval.reranker is not None
                else None
            ),
            "dimension": self._index.dimension,
            "distance_metric": self._index.metric,
            "circuits": {
                "embedding": self._embedder.breaker.state.value,
                "vector_store": self._index.vector_breaker.state.value,
                "keyword_index": self._index.keyword_breaker.state.value,
                "reranker": self._retrieval.rerank_breaker.state.value,
            },
            "default_top_k": self._default_top_k,
            "ingestion_workers": self._workers,
            "app_env": settings.app_env if settings else None,
        }

    async def close(self) -> None:
        """Release network resources held by the providers."""
        await self._embedder.client.close()
        if self._retrieval.reranker is not None:
            await self._retrieval.reranker.close()


async def _run_check(
    name: str,
    configured: bool,
    breaker: CircuitBreaker,
    check,
    details: dict[str, str],
) -> ServiceStatus:
    if not configured or check is None:
        details[name] = "not configured"
        return ServiceStatus.NOT_CONFIGURED
    if breaker.is_open():
        details[name] = f"circuit open after {breaker.consecutive_failures} failures"
        return ServiceStatus.CIRCUIT_OPEN
    try:
        ok = await asyncio.wait_for(check(), timeout=_HEALTH_CHECK_TIMEOUT)
    except asyncio.TimeoutError:
        details[name] = f"health check timed out after {_HEALTH_CHECK_TIMEOUT:.0f}s"
        return ServiceStatus.UNHEALTHY
    if not ok:
        details[name] = "health check failed"
        return ServiceStatus.UNHEALTHY
    return ServiceStatus.HEALTHY
