"""Abstract base class for text-embedding service clients.

Defines the contract for turning chunk and query text into vectors.
Implementations may wrap the Jina embeddings API, an OpenAI-compatible
endpoint, or a deterministic fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   JinaEmbeddingClient    -- jina-embeddings-v3 over httpx
#   OpenAIEmbeddingClient  -- any OpenAI-compatible embeddings endpoint
# Located in: course_rag/providers/embedding/
class IEmbeddingClient(ABC):
    """Contract for embedding services used by the ingestion and retrieval paths.

    Implementations make exactly one remote call per :meth:`embed`
    invocation.  Batching, retries, timeouts and circuit breaking are the
    orchestrator's concern, not the client's.
    """

    @abstractmethod
    async def embed(self, texts: list[str], *, is_query: bool = False) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Texts to embed in a single request.
        is_query:
            ``True`` when embedding a search query rather than passages;
            providers with asymmetric models use a different task.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.

        Raises
        ------
        course_rag.utils.errors.EmbeddingServiceError
            If the API call fails or returns a malformed response.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of produced vectors."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded on each embedding."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"jina_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the client is configured (credentials present)."""

    async def check_health(self) -> bool:
        """Check the service with a tiny request.  Never raises."""
        if not self.is_available():
            return False
        try:
            vectors = await self.embed(["health check"])
        except Exception:
            return False
        return bool(vectors) and len(vectors[0]) == self.get_dimension()

    async def close(self) -> None:
        """Release network resources held by the client."""
        return None
