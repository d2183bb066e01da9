"""OpenAI-compatible embedding adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingClient`.
Supports both real OpenAI and OpenAI-compatible providers (TogetherAI,
Fireworks, a local Ollama) via custom ``base_url`` and model settings.
"""

from __future__ import annotations

import openai
import structlog

from course_rag.config.settings import Settings
from course_rag.interfaces.embedding_client import IEmbeddingClient
from course_rag.utils.errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}

# text-embedding-3-* accept a "dimensions" argument to shorten vectors.
_SUPPORTS_DIMENSIONS = frozenset({"text-embedding-3-small", "text-embedding-3-large"})


class OpenAIEmbeddingClient(IEmbeddingClient):
    """Embedding client backed by an OpenAI-compatible embeddings API.

    When the model supports shortened vectors, requests are made at the
    configured ``vector_dimension`` so the collection dimension stays the
    same across providers.  Otherwise the model's native dimension is used.
    """

    def __init__(
        self,
        settings: Settings,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_embedding_model or "text-embedding-3-small"

        if client is None:
            client_kwargs: dict = {
                "api_key": self._api_key,
                "timeout": settings.external_call_timeout,
                # Retries are owned by the orchestrator's policy.
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

        if self._model in _SUPPORTS_DIMENSIONS:
            self._dimension = settings.vector_dimension
            self._request_dimensions: int | None = settings.vector_dimension
        else:
            self._dimension = _MODEL_DIMENSIONS.get(self._model, settings.vector_dimension)
            self._request_dimensions = None
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingClient implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str], *, is_query: bool = False) -> list[list[float]]:
        if not texts:
            return []

        kwargs: dict = {"input": texts, "model": self._model}
        if self._request_dimensions is not None:
            kwargs["dimensions"] = self._request_dimensions

        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.APIStatusError as exc:
            retryable = exc.status_code == 429 or exc.status_code >= 500
            raise EmbeddingServiceError(
                message=f"{self._provider_label} API error {exc.status_code}: {exc.message}",
                provider_name=self.get_provider_name(),
                retryable=retryable,
            ) from exc
        except openai.APIError as exc:
            # Connection errors and timeouts.
            raise EmbeddingServiceError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
                retryable=True,
            ) from exc

        ordered = sorted(response.data, key=lambda item: item.index)
        vectors = [list(item.embedding) for item in ordered]
        logger.debug(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return vectors

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    async def close(self) -> None:
        await self._client.close()
