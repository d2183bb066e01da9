"""Abstract base class for vector-store providers.

Defines the contract for storing and querying chunk vectors.  Implementations
may wrap ChromaDB, an in-process numpy store, or any other vector database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from course_rag.models.retrieval import IndexedEntry, SearchHit


# Concrete implementations: ChromaDBVectorStore, InMemoryVectorStore
# Located in: course_rag/providers/vector_store/
class IVectorStore(ABC):
    """Contract for vector-store services.

    **Supported filter syntax** (the *filters* dict in :meth:`search`):

    * ``{"language": "en"}`` -- payload equality.
    * ``{"quality_score": {"$gte": 70}}`` -- numeric range (``$gte``,
      ``$lte``, ``$gt``, ``$lt``).
    * ``{"course_id": {"$in": ["c1", "c2"]}}`` -- membership (``$nin`` for
      exclusion).  Membership operands must be lists.

    Multiple keys are combined with AND.  Concrete providers translate this
    into their backend-specific query language.
    """

    @abstractmethod
    async def ensure_collection(self, dimension: int, metric: str) -> None:
        """Create the collection if absent.

        Raises
        ------
        course_rag.utils.errors.ValidationError
            If an existing collection has a different dimension or metric.
        """

    @abstractmethod
    async def upsert(self, entries: list[IndexedEntry]) -> list[str]:
        """Insert or replace *entries*; return the ids written."""

    @abstractmethod
    async def search(
        self,
        vector: list[float],
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        """Return up to *top_k* hits ordered by descending similarity."""

    @abstractmethod
    async def delete_by_ids(self, ids: list[str]) -> int:
        """Delete entries by id; return how many existed."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> list[str]:
        """Delete every entry of *document_id*; return the removed ids."""

    @abstractmethod
    async def get_entries(self, ids: list[str]) -> list[IndexedEntry]:
        """Return stored entries for *ids* with their text and payload.

        Unknown ids are skipped.  Backends may leave ``vector`` empty; the
        result is used to rebuild the keyword index, which needs only text
        and payload.
        """

    @abstractmethod
    async def list_ids(self, document_id: str | None = None) -> set[str]:
        """Return stored ids, optionally restricted to one document."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored entries."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is initialised and usable."""

    async def check_health(self) -> bool:
        """Check the store with a cheap read.  Never raises."""
        if not self.is_available():
            return False
        try:
            await self.count()
        except Exception:
            return False
        return True
