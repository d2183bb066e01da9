"""course_rag domain models -- re-exports all public model classes.

The models are organized across four submodules by concern:
    - document.py   -- Document, NormalizedText, Chunk, Embedding, DocumentProfile
    - quality.py    -- QualityReport and its parts
    - retrieval.py  -- IndexedEntry, SearchHit, SearchResult, RetrievalResponse
    - ingestion.py  -- IngestOptions, IngestionReport, health and index results
"""

from __future__ import annotations

from course_rag.models.document import (
    Chunk,
    ChunkingOptions,
    ChunkStrategy,
    ContentStructure,
    Document,
    DocumentProfile,
    Embedding,
    NormalizedText,
    make_chunk_id,
)
from course_rag.models.ingestion import (
    DeletionResult,
    EmbeddingBatchResult,
    HealthReport,
    HealthStatus,
    IngestionReport,
    IngestionStatus,
    IngestOptions,
    ServiceStatus,
    UpsertResult,
)
from course_rag.models.quality import (
    ComponentScores,
    IssueSeverity,
    IssueType,
    QualityIssue,
    QualityReport,
    QualityTier,
    ReadabilityMetrics,
    Recommendation,
)
from course_rag.models.retrieval import (
    IndexedEntry,
    RetrievalResponse,
    RetrieveOptions,
    SearchHit,
    SearchResult,
    SearchSource,
)

__all__ = [
    "Chunk",
    "ChunkStrategy",
    "ChunkingOptions",
    "ComponentScores",
    "ContentStructure",
    "DeletionResult",
    "Document",
    "DocumentProfile",
    "Embedding",
    "EmbeddingBatchResult",
    "HealthReport",
    "HealthStatus",
    "IndexedEntry",
    "IngestOptions",
    "IngestionReport",
    "IngestionStatus",
    "IssueSeverity",
    "IssueType",
    "NormalizedText",
    "QualityIssue",
    "QualityReport",
    "QualityTier",
    "ReadabilityMetrics",
    "Recommendation",
    "RetrievalResponse",
    "RetrieveOptions",
    "SearchHit",
    "SearchResult",
    "SearchSource",
    "ServiceStatus",
    "UpsertResult",
    "make_chunk_id",
]
