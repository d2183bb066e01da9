"""Jina embeddings adapter.

Wraps ``POST /v1/embeddings`` to implement :class:`IEmbeddingClient` using
``jina-embeddings-v3`` (1024 dimensions by default, multilingual).  Passages
and queries use different retrieval tasks so the asymmetric model places
them in compatible regions of the space.
"""

from __future__ import annotations

import httpx
import structlog

from course_rag.config.settings import Settings
from course_rag.interfaces.embedding_client import IEmbeddingClient
from course_rag.providers.jina_http import post_json
from course_rag.utils.errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)

_PASSAGE_TASK = "retrieval.passage"
_QUERY_TASK = "retrieval.query"


class JinaEmbeddingClient(IEmbeddingClient):
    """Embedding client backed by the Jina AI embeddings API.

    An ``httpx.AsyncClient`` may be injected for connection pooling and
    testability; otherwise one is created and owned by this instance.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.jina_api_key
        self._model = settings.jina_embedding_model
        self._dimension = settings.vector_dimension
        self._url = f"{settings.jina_base_url.rstrip('/')}/embeddings"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.external_call_timeout)
        )

    # ------------------------------------------------------------------
    # IEmbeddingClient implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str], *, is_query: bool = False) -> list[list[float]]:
        if not texts:
            return []

        payload = {
            "model": self._model,
            "input": texts,
            "task": _QUERY_TASK if is_query else _PASSAGE_TASK,
            "dimensions": self._dimension,
            "normalized": True,
        }
        body = await post_json(
            self._client,
            self._url,
            self._api_key,
            payload,
            provider_name=self.get_provider_name(),
            error_cls=EmbeddingServiceError,
        )

        data = body.get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise EmbeddingServiceError(
                message=(
                    f"Expected {len(texts)} embeddings, got "
                    f"{len(data) if isinstance(data, list) else 'none'}"
                ),
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        # The API may return items out of order; "index" is authoritative.
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        vectors = [item.get("embedding") or [] for item in ordered]

        usage = body.get("usage") or {}
        logger.debug(
            "jina_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=usage.get("total_tokens"),
            task=payload["task"],
        )
        return vectors

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "jina_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
