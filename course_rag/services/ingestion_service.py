"""Orchestrator for the quality-gated document ingestion pipeline.

Pipeline stages: **normalize -> assess -> gate -> chunk -> embed -> index**.
A descriptive :class:`DocumentProfile` (title, size, key phrases, layout) is
computed alongside the quality report and returned on the ingestion report.

The :class:`IngestionService` coordinates its collaborators (normalizer,
quality assessor, document analyzer, chunker, embedding orchestrator and
index manager) without any of them knowing about each other.  All
dependencies are injected via the constructor so providers can be swapped
without touching this class.

Quality-gate rejections and partial chunk failures are outcomes, reported
on the returned :class:`IngestionReport`; they are never raised.  Invalid
chunking options raise :class:`ValidationError` before any work is done,
and a caller-initiated cancellation raises
:class:`IngestionCancelledError`.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog

from course_rag.config.constants import (
    PAYLOAD_CHUNK_INDEX,
    PAYLOAD_COURSE_ID,
    PAYLOAD_DOCUMENT_ID,
    PAYLOAD_LANGUAGE,
    PAYLOAD_QUALITY,
)
from course_rag.models.document import (
    Chunk,
    ChunkingOptions,
    Document,
    DocumentProfile,
    Embedding,
)
from course_rag.models.ingestion import IngestionReport, IngestionStatus, IngestOptions
from course_rag.models.quality import QualityReport
from course_rag.models.retrieval import IndexedEntry
from course_rag.services.chunker import TextChunker, validate_options
from course_rag.services.document_analyzer import DocumentAnalyzer
from course_rag.services.normalizer import TextNormalizer
from course_rag.services.quality_assessor import QualityAssessor
from course_rag.utils import text_stats
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import (
    ExternalServiceError,
    ServiceUnavailableError,
    ValidationError,
)

if TYPE_CHECKING:
    from course_rag.services.embedding_orchestrator import EmbeddingOrchestrator
    from course_rag.services.index_manager import IndexManager

logger = structlog.get_logger(logger_name=__name__)

REASON_NO_CONTENT = "no content"


class IngestionService:
    """Runs one document through normalize -> assess -> gate -> chunk -> embed -> index.

    Parameters
    ----------
    embedder:
        Batches chunks to the embedding service.
    index:
        Writes entries to the vector store and keyword index in lockstep.
    normalizer:
        Cleans raw text and detects its language.
    assessor:
        Scores normalized text.
    chunker:
        Splits normalized text into chunks.
    analyzer:
        Builds the descriptive document profile.
    quality_minimum:
        Default gate threshold when the options do not set one.
    chunking:
        Default chunk sizes when the options do not override them.
    """

    def __init__(
        self,
        embedder: EmbeddingOrchestrator,
        index: IndexManager,
        normalizer: TextNormalizer | None = None,
        assessor: QualityAssessor | None = None,
        chunker: TextChunker | None = None,
        analyzer: DocumentAnalyzer | None = None,
        quality_minimum: float = 50.0,
        chunking: ChunkingOptions | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._normalizer = normalizer or TextNormalizer()
        self._assessor = assessor or QualityAssessor()
        self._chunker = chunker or TextChunker()
        self._analyzer = analyzer or DocumentAnalyzer()
        self._quality_minimum = quality_minimum
        self._chunking = chunking or ChunkingOptions()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        document: Document,
        options: IngestOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> IngestionReport:
        """Ingest *document* and report what happened.

        Raises
        ------
        ValidationError
            If the document id is empty or the effective chunking options
            are inconsistent.
        IngestionCancelledError
            If *cancel_token* fires before indexing completes.
        """
        start = time.monotonic()
        options = options or IngestOptions()
        chunk_options = self.validate_request(document, options)
        doc_id = document.document_id

        # Step 1: normalize.
        normalized = self._normalizer.normalize(
            document.source_text,
            document.mime_hint,
            encoding=document.encoding,
            declared_language=document.language,
        )

        # Step 2: assess.
        quality = self._assessor.assess(normalized)
        language = normalized.language

        if normalized.is_empty:
            return self._finish(
                start,
                document_id=doc_id,
                quality_report=quality,
                status=IngestionStatus.REJECTED,
                reason=REASON_NO_CONTENT,
                language=language,
            )
        profile = self._analyzer.analyze(normalized.text, document.title)

        # Step 3: gate.
        threshold = (
            options.min_quality_to_index
            if options.min_quality_to_index is not None
            else self._quality_minimum
        )
        below_threshold = quality.overall_score < threshold
        if below_threshold and not options.force:
            return self._finish(
                start,
                document_id=doc_id,
                quality_report=quality,
                status=IngestionStatus.REJECTED,
                below_threshold=True,
                reason=f"quality score {quality.overall_score:.2f} is below "
                f"the indexing threshold {threshold:.2f}",
                language=language,
                profile=profile,
            )

        # Step 4: chunk.  Indices are fixed here, before any concurrent work.
        chunks = self._chunker.chunk(
            doc_id,
            normalized.text,
            options.chunk_strategy,
            chunk_options,
            metadata=dict(document.metadata),
        )
        if not chunks:
            return self._finish(
                start,
                document_id=doc_id,
                quality_report=quality,
                status=IngestionStatus.REJECTED,
                below_threshold=below_threshold,
                reason=REASON_NO_CONTENT,
                language=language,
                profile=profile,
            )

        # Steps 5-6: embed and index.
        try:
            stale_removed = await self._remove_stale_chunks(doc_id, chunks)
            embedded = await self._embedder.embed(chunks, cancel_token)
            entries = self._build_entries(
                document, chunks, embedded.embeddings, quality, language, profile
            )
            upserted = await self._index.upsert(entries, cancel_token)
        except (ExternalServiceError, ServiceUnavailableError) as exc:
            logger.error(
                "ingestion_failed",
                document_id=doc_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._finish(
                start,
                document_id=doc_id,
                quality_report=quality,
                chunk_count=len(chunks),
                failed_chunk_ids=[c.chunk_id for c in chunks],
                status=IngestionStatus.REJECTED,
                below_threshold=below_threshold,
                reason=str(exc),
                language=language,
                profile=profile,
            )

        failed = set(embedded.failed_chunk_ids) | set(upserted.failed_ids)
        failed_ids = [c.chunk_id for c in chunks if c.chunk_id in failed]
        indexed = len(upserted.upserted_ids)

        if indexed == 0:
            status = IngestionStatus.REJECTED
            reason = "; ".join(embedded.errors + upserted.errors) or "no chunks were indexed"
        elif failed_ids:
            status = IngestionStatus.PARTIAL
            reason = f"{len(failed_ids)} of {len(chunks)} chunks failed to index"
        elif below_threshold:
            status = IngestionStatus.PARTIAL
            reason = "forced ingestion below the quality threshold"
        else:
            status = IngestionStatus.INGESTED
            reason = None

        return self._finish(
            start,
            document_id=doc_id,
            quality_report=quality,
            chunk_count=len(chunks),
            indexed_count=indexed,
            failed_chunk_ids=failed_ids,
            status=status,
            below_threshold=below_threshold,
            reason=reason,
            language=language,
            stale_chunks_removed=stale_removed,
            profile=profile,
        )

    def validate_request(
        self, document: Document, options: IngestOptions | None = None
    ) -> ChunkingOptions:
        """Check a request up front and return its effective chunking options.

        Raises :class:`ValidationError` for an empty document id or
        inconsistent chunk sizes.
        """
        if not document.document_id or not document.document_id.strip():
            raise ValidationError(message="document_id must not be empty")
        chunk_options = self._chunk_options(options or IngestOptions())
        validate_options(chunk_options)
        return chunk_options

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _chunk_options(self, options: IngestOptions) -> ChunkingOptions:
        return ChunkingOptions(
            max_size=options.max_chunk_size
            if options.max_chunk_size is not None
            else self._chunking.max_size,
            min_size=options.min_chunk_size
            if options.min_chunk_size is not None
            else self._chunking.min_size,
            overlap=options.overlap_size
            if options.overlap_size is not None
            else self._chunking.overlap,
        )

    async def _remove_stale_chunks(self, document_id: str, chunks: list[Chunk]) -> int:
        """Repair index drift for the document and drop chunks the new version lacks.

        Re-ingesting a shorter version leaves chunk ids beyond the new chunk
        count behind; they are deleted from both indices here.
        """
        await self._index.reconcile(document_id)
        existing = await self._index.document_chunk_ids(document_id)
        stale = sorted(existing - {c.chunk_id for c in chunks})
        if not stale:
            return 0
        await self._index.delete_chunks(stale)
        logger.info("stale_chunks_removed", document_id=document_id, count=len(stale))
        return len(stale)

    @staticmethod
    def _build_entries(
        document: Document,
        chunks: list[Chunk],
        embeddings: list[Embedding],
        quality: QualityReport,
        language: str,
        profile: DocumentProfile | None = None,
    ) -> list[IndexedEntry]:
        title = profile.title if profile is not None else document.title
        by_chunk = {e.chunk_id: e for e in embeddings}
        entries: list[IndexedEntry] = []
        for chunk in chunks:
            embedding = by_chunk.get(chunk.chunk_id)
            if embedding is None:
                continue
            payload: dict[str, Any] = {
                **chunk.metadata,
                PAYLOAD_DOCUMENT_ID: document.document_id,
                "text": chunk.text,
                PAYLOAD_QUALITY: quality.overall_score,
                "quality_tier": quality.tier.value,
                PAYLOAD_LANGUAGE: language,
                PAYLOAD_COURSE_ID: document.course_id,
                "resource_id": document.resource_id,
                "title": title,
                PAYLOAD_CHUNK_INDEX: chunk.index,
                "strategy": chunk.strategy.value,
                "token_count": chunk.token_count,
                "word_count": len(text_stats.words(chunk.text)),
                "sentence_count": len(text_stats.split_sentences(chunk.text)),
                "start_offset": chunk.start_offset,
                "end_offset": chunk.end_offset,
                "embedding_model": embedding.model,
            }
            entries.append(
                IndexedEntry(vector_id=chunk.chunk_id, vector=embedding.vector, payload=payload)
            )
        return entries

    @staticmethod
    def _finish(start: float, **fields: Any) -> IngestionReport:
        report = IngestionReport(elapsed_seconds=round(time.monotonic() - start, 3), **fields)
        log = logger.info if report.status is IngestionStatus.INGESTED else logger.warning
        log(
            "ingestion_complete",
            document_id=report.document_id,
            status=report.status.value,
            chunks=report.chunk_count,
            indexed=report.indexed_count,
            failed=len(report.failed_chunk_ids),
            quality_score=report.quality_report.overall_score if report.quality_report else None,
            below_threshold=report.below_threshold,
            reason=report.reason,
            time_s=report.elapsed_seconds,
        )
        return report
