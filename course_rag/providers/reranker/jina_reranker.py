"""Jina rerank adapter.

Wraps ``POST /v1/rerank`` (``jina-reranker-v2-base-multilingual`` by
default) to implement :class:`IReranker`.
"""

from __future__ import annotations

import httpx
import structlog

from course_rag.config.settings import Settings
from course_rag.interfaces.reranker import IReranker
from course_rag.providers.jina_http import post_json
from course_rag.utils.errors import RerankServiceError

logger = structlog.get_logger(logger_name=__name__)


class JinaReranker(IReranker):
    """Cross-encoder reranker served by the Jina AI API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.jina_api_key
        self._model = settings.jina_reranker_model
        self._url = f"{settings.jina_base_url.rstrip('/')}/rerank"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.external_call_timeout)
        )

    async def rerank(
        self, query: str, texts: list[str], top_n: int | None = None
    ) -> list[tuple[int, float]]:
        if not texts:
            return []

        payload = {
            "model": self._model,
            "query": query,
            "documents": texts,
            "top_n": min(top_n or len(texts), len(texts)),
            "return_documents": False,
        }
        body = await post_json(
            self._client,
            self._url,
            self._api_key,
            payload,
            provider_name=self.get_provider_name(),
            error_cls=RerankServiceError,
        )

        results = body.get("results")
        if not isinstance(results, list):
            raise RerankServiceError(
                message="Rerank response has no results list",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        scored: list[tuple[int, float]] = []
        for item in results:
            index = item.get("index")
            score = item.get("relevance_score")
            if not isinstance(index, int) or not 0 <= index < len(texts) or score is None:
                raise RerankServiceError(
                    message=f"Malformed rerank result: {item!r}",
                    provider_name=self.get_provider_name(),
                    retryable=False,
                )
            scored.append((index, float(score)))

        scored.sort(key=lambda pair: (-pair[1], pair[0]))
        logger.debug("jina_rerank", model=self._model, candidates=len(texts), returned=len(scored))
        return scored

    def get_provider_name(self) -> str:
        return "jina_reranker"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
