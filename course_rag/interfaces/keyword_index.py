"""Abstract base class for keyword (lexical) search indices."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from course_rag.models.retrieval import IndexedEntry, SearchHit


# Concrete implementation: BM25KeywordIndex (course_rag/providers/keyword/)
class IKeywordIndex(ABC):
    """Contract for keyword indices kept in lockstep with the vector store.

    Entries are keyed by the same chunk id as the vector store and carry
    the same payload, so filters use the syntax documented on
    :class:`~course_rag.interfaces.vector_store.IVectorStore`.
    """

    @abstractmethod
    async def index(self, entries: list[IndexedEntry]) -> list[str]:
        """Insert or replace entries (text taken from the payload)."""

    @abstractmethod
    async def search(
        self,
        query: str,
        filters: dict[str, Any] | None = None,
        top_k: int = 10,
    ) -> list[SearchHit]:
        """Return up to *top_k* hits ordered by descending relevance."""

    @abstractmethod
    async def delete_by_ids(self, ids: list[str]) -> int:
        """Delete entries by id; return how many existed."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> list[str]:
        """Delete every entry of *document_id*; return the removed ids."""

    @abstractmethod
    async def list_ids(self, document_id: str | None = None) -> set[str]:
        """Return stored ids, optionally restricted to one document."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"bm25"``."""

    def is_available(self) -> bool:
        return True

    async def check_health(self) -> bool:
        """Check the index with a cheap read.  Never raises."""
        try:
            await self.list_ids()
        except Exception:
            return False
        return True
