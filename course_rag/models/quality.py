"""Quality assessment models.

A :class:`QualityReport` is the pure, deterministic output of
:meth:`~course_rag.services.quality_assessor.QualityAssessor.assess`.  The
ingestion gate compares ``overall_score`` against a configured minimum.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class QualityTier(str, Enum):
    PREMIUM = "premium"
    RECOMMENDED = "recommended"
    ACCEPTABLE = "acceptable"
    BELOW_THRESHOLD = "below_threshold"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueType(str, Enum):
    ENCODING = "encoding"
    FORMATTING = "formatting"
    BINARY = "binary"
    TRUNCATION = "truncation"
    DUPLICATION = "duplication"


class ComponentScores(BaseModel):
    """Per-dimension sub-scores, each in [0, 100]."""

    model_config = ConfigDict(frozen=True)

    readability: float = Field(ge=0.0, le=100.0)
    coherence: float = Field(ge=0.0, le=100.0)
    completeness: float = Field(ge=0.0, le=100.0)
    formatting: float = Field(ge=0.0, le=100.0)


class ReadabilityMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    flesch_reading_ease: float
    flesch_kincaid_grade: float
    gunning_fog: float
    level: str


class QualityIssue(BaseModel):
    """A detected content defect."""

    model_config = ConfigDict(frozen=True)

    type: IssueType
    severity: IssueSeverity
    message: str
    count: int = Field(default=1, ge=1)


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    area: str = Field(description='Component name or "errors".')
    priority: IssueSeverity
    suggestion: str


class QualityReport(BaseModel):
    """Composite quality score with its components and diagnostics."""

    model_config = ConfigDict(frozen=True)

    overall_score: float = Field(ge=0.0, le=100.0)
    tier: QualityTier
    components: ComponentScores
    readability_metrics: ReadabilityMetrics
    errors: list[QualityIssue] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    word_count: int = Field(default=0, ge=0)
    sentence_count: int = Field(default=0, ge=0)
    paragraph_count: int = Field(default=0, ge=0)
