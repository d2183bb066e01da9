"""Index entry and retrieval models.

:class:`IndexedEntry` is what gets written to both indices.  Stores answer
primitive reads with :class:`SearchHit`; the retrieval engine fuses and
reranks those into ordered :class:`SearchResult` lists wrapped in a
:class:`RetrievalResponse`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# IndexedEntry -- one chunk as stored in the vector and keyword indices.
# ---------------------------------------------------------------------------
class IndexedEntry(BaseModel):
    """A chunk vector plus the payload mirrored into the keyword index.

    ``vector_id`` equals the chunk id.  ``payload`` always carries
    ``document_id``, ``text``, ``quality_score``, ``language``,
    ``course_id`` and ``chunk_index`` alongside document metadata.
    """

    model_config = ConfigDict(frozen=True)

    vector_id: str
    vector: list[float]
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def chunk_id(self) -> str:
        return self.vector_id

    @property
    def document_id(self) -> str:
        return str(self.payload.get("document_id", ""))

    @property
    def text(self) -> str:
        return str(self.payload.get("text", ""))


class SearchHit(BaseModel):
    """A single match returned by a vector store or keyword index."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    text: str = ""
    score: float = 0.0
    payload: dict[str, Any] = Field(default_factory=dict)


class SearchSource(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    FUSED = "fused"
    RERANKED = "reranked"


class SearchResult(BaseModel):
    """A retrieval result with provenance from each ranking stage.

    Ranks are 1-based; ``None`` means the chunk did not appear in that
    candidate list.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    text: str
    score: float
    source: SearchSource
    vector_rank: int | None = None
    keyword_rank: int | None = None
    fused_score: float = 0.0
    rerank_score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def document_id(self) -> str:
        return str(self.metadata.get("document_id", ""))


class RetrieveOptions(BaseModel):
    """Per-query retrieval options.  ``top_k`` is validated by the engine."""

    model_config = ConfigDict(frozen=True)

    top_k: int = 10
    min_quality: float | None = None
    language: str | None = None
    course_id: str | None = None
    filters: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional payload equality filters.",
    )
    enable_rerank: bool = True


class RetrievalResponse(BaseModel):
    """Ordered results plus degradation diagnostics."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    partial: bool = Field(
        default=False,
        description="True when one search path failed and results are degraded.",
    )
    reranked: bool = False
    failed_sources: list[str] = Field(default_factory=list)
    total_candidates: int = Field(default=0, ge=0)
