"""Abstract base class for cross-encoder reranking services."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: JinaReranker (course_rag/providers/reranker/)
class IReranker(ABC):
    """Contract for rerankers that re-score candidate passages for a query."""

    @abstractmethod
    async def rerank(
        self, query: str, texts: list[str], top_n: int | None = None
    ) -> list[tuple[int, float]]:
        """Score *texts* against *query*.

        Returns
        -------
        list[tuple[int, float]]
            ``(index into texts, relevance score)`` pairs, best first.

        Raises
        ------
        course_rag.utils.errors.RerankServiceError
            If the service call fails or returns a malformed response.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"jina_reranker"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the reranker is configured."""

    async def check_health(self) -> bool:
        if not self.is_available():
            return False
        try:
            await self.rerank("health check", ["health check"], top_n=1)
        except Exception:
            return False
        return True

    async def close(self) -> None:
        return None
