"""Ingestion, index-maintenance and health models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from course_rag.models.document import ChunkStrategy, DocumentProfile, Embedding
from course_rag.models.quality import QualityReport


class IngestOptions(BaseModel):
    """Per-document ingestion options.

    ``None`` means "use the configured default" for every optional field.
    """

    model_config = ConfigDict(frozen=True)

    chunk_strategy: ChunkStrategy = ChunkStrategy.PARAGRAPH
    min_quality_to_index: float | None = None
    force: bool = False
    max_chunk_size: int | None = None
    min_chunk_size: int | None = None
    overlap_size: int | None = None


class IngestionStatus(str, Enum):
    INGESTED = "ingested"
    REJECTED = "rejected"
    PARTIAL = "partial"


# ---------------------------------------------------------------------------
# IngestionReport -- outcome of one ingest call; never raised.
# ---------------------------------------------------------------------------
class IngestionReport(BaseModel):
    """Summary of a single document ingestion run.

    Quality-gate rejections and partial chunk failures are reported here
    rather than raised.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    quality_report: QualityReport | None = None
    chunk_count: int = Field(default=0, ge=0)
    indexed_count: int = Field(default=0, ge=0)
    failed_chunk_ids: list[str] = Field(default_factory=list)
    status: IngestionStatus
    below_threshold: bool = False
    reason: str | None = None
    language: str = "unknown"
    stale_chunks_removed: int = Field(default=0, ge=0)
    profile: DocumentProfile | None = Field(
        default=None,
        description="Title, size, key phrases and layout; None when there was no content.",
    )
    elapsed_seconds: float = Field(default=0.0, ge=0.0)


class EmbeddingBatchResult(BaseModel):
    """Embeddings for the chunks that succeeded plus ids of those that did not."""

    model_config = ConfigDict(frozen=True)

    embeddings: list[Embedding] = Field(default_factory=list)
    failed_chunk_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class UpsertResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    upserted_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class DeletionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    removed_chunks: int = Field(default=0, ge=0)
    reconciled: bool = Field(
        default=True,
        description="True when both indices agree the document is gone.",
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
class ServiceStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    CIRCUIT_OPEN = "circuit_open"
    NOT_CONFIGURED = "not_configured"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthReport(BaseModel):
    """Per-collaborator status plus an aggregate verdict.

    ``unhealthy`` when both search paths are unusable or ingestion cannot
    embed; ``degraded`` when anything else is not healthy.
    """

    model_config = ConfigDict(frozen=True)

    status: HealthStatus
    embedding_service: ServiceStatus
    vector_store: ServiceStatus
    keyword_index: ServiceStatus
    rerank_service: ServiceStatus
    details: dict[str, str] = Field(default_factory=dict)
