"""Document, normalized text and chunk models.

A :class:`Document` arrives with raw extracted text and metadata; the
normalizer turns it into :class:`NormalizedText`; the chunker splits that
into :class:`Chunk` objects whose ids are stable across re-ingestion.
All models use frozen config to enforce immutability.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Namespace for deterministic chunk ids: uuid5(namespace, "<doc_id>:<index>").
CHUNK_ID_NAMESPACE = uuid.UUID("6f1c2b8e-4a7d-5e3f-9b0c-1d2e3f4a5b6c")


def make_chunk_id(document_id: str, index: int) -> str:
    """Return the stable id for chunk *index* of *document_id*."""
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, f"{document_id}:{index}"))


class ChunkStrategy(str, Enum):
    """How a document is split into retrievable units."""

    FIXED = "fixed"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    SEMANTIC = "semantic"


# ---------------------------------------------------------------------------
# Document -- input to ingestion.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """A source document already extracted to raw text."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Caller-assigned unique document identifier.")
    source_text: str | bytes = Field(description="Raw extracted text (or undecoded bytes).")
    mime_hint: str | None = Field(
        default=None,
        description='Content-type hint such as "text/html" or "text/plain".',
    )
    title: str = Field(default="", description="Human-readable document title.")
    course_id: str | None = Field(default=None, description="Owning course, if any.")
    resource_id: str | None = Field(default=None, description="Owning resource, if any.")
    language: str | None = Field(
        default=None,
        description="Declared language code; overrides detection when set.",
    )
    encoding: str | None = Field(
        default=None, description="Declared encoding for byte input."
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary scalar metadata copied onto every chunk payload.",
    )


class NormalizedText(BaseModel):
    """Output of :class:`~course_rag.services.normalizer.TextNormalizer`."""

    model_config = ConfigDict(frozen=True)

    text: str
    language: str = "unknown"
    language_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    original_length: int = Field(default=0, ge=0)
    normalized_length: int = Field(default=0, ge=0)
    removed_duplicate_paragraphs: int = Field(default=0, ge=0)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


# ---------------------------------------------------------------------------
# Chunk -- the unit that is embedded and indexed.
# ---------------------------------------------------------------------------
class ChunkingOptions(BaseModel):
    """Size limits for the chunker, measured in word tokens.

    Values are checked by the chunker itself so that bad options surface as
    :class:`~course_rag.utils.errors.ValidationError`.
    """

    model_config = ConfigDict(frozen=True)

    max_size: int = 1000
    min_size: int = 100
    overlap: int = 50


class Chunk(BaseModel):
    """A contiguous span of a normalized document."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="uuid5 of document id and chunk index.")
    document_id: str
    index: int = Field(ge=0, description="0-based position within the document.")
    text: str
    token_count: int = Field(default=0, ge=0)
    start_offset: int = Field(default=0, ge=0)
    end_offset: int = Field(default=0, ge=0)
    strategy: ChunkStrategy = ChunkStrategy.PARAGRAPH
    metadata: dict[str, Any] = Field(default_factory=dict)


class Embedding(BaseModel):
    """A vector produced for one chunk."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    vector: list[float]
    model: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dimension(self) -> int:
        return len(self.vector)


class ContentStructure(BaseModel):
    """Layout signals found in the normalized text, line by line."""

    model_config = ConfigDict(frozen=True)

    total_lines: int = Field(default=0, ge=0)
    paragraphs: int = Field(default=0, ge=0)
    sentences: int = Field(default=0, ge=0)
    headings: list[str] = Field(default_factory=list)
    list_items: int = Field(default=0, ge=0)
    code_blocks: int = Field(default=0, ge=0)


class DocumentProfile(BaseModel):
    """Descriptive metadata computed for a document during ingestion."""

    model_config = ConfigDict(frozen=True)

    title: str
    word_count: int = Field(default=0, ge=0)
    char_count: int = Field(default=0, ge=0)
    reading_time_minutes: int = Field(default=0, ge=0)
    key_phrases: list[str] = Field(default_factory=list)
    structure: ContentStructure = Field(default_factory=ContentStructure)
