"""Hybrid retrieval: vector search + keyword search -> RRF -> rerank -> filter.

The :class:`RetrievalService` runs the two searches concurrently and keeps
going when one of them fails: the surviving list is used on its own and the
response is flagged ``partial``.  Only when both fail does the call raise
:class:`~course_rag.utils.errors.RetrievalUnavailableError`.

Reranking is best-effort.  A reranker failure or timeout falls back to the
fused order; it never fails the query.  Filters are pushed down to both
searches and applied again to the final list.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from course_rag.models.retrieval import (
    RetrievalResponse,
    RetrieveOptions,
    SearchHit,
    SearchResult,
    SearchSource,
)
from course_rag.services.fusion import DEFAULT_RRF_K, reciprocal_rank_fusion, tie_break_key
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import RerankServiceError, RetrievalUnavailableError, ValidationError
from course_rag.utils.filters import build_filters, matches_filters
from course_rag.utils.retry import CircuitBreaker, RetryPolicy, guarded_call

if TYPE_CHECKING:
    from course_rag.interfaces.reranker import IReranker
    from course_rag.services.embedding_orchestrator import EmbeddingOrchestrator
    from course_rag.services.index_manager import IndexManager

logger = structlog.get_logger(logger_name=__name__)

SOURCE_VECTOR = "vector"
SOURCE_KEYWORD = "keyword"


class RetrievalService:
    """Answers queries by fusing vector and keyword candidates.

    Parameters
    ----------
    embedder:
        Embeds the query for the vector search.
    index:
        Index manager providing ``search`` and ``search_keyword``.
    reranker:
        Optional reranking service; ``None`` disables reranking.
    policy:
        Retry and timeout policy for reranker calls.
    rerank_breaker:
        Circuit breaker for the reranker.
    rrf_k:
        RRF smoothing constant.
    candidate_multiplier:
        Each search fetches, and the reranker receives, this many times
        ``top_k`` candidates.
    """

    def __init__(
        self,
        embedder: EmbeddingOrchestrator,
        index: IndexManager,
        reranker: IReranker | None = None,
        policy: RetryPolicy | None = None,
        rerank_breaker: CircuitBreaker | None = None,
        rrf_k: int = DEFAULT_RRF_K,
        candidate_multiplier: int = 3,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._reranker = reranker
        self._policy = policy or RetryPolicy()
        self._rerank_breaker = rerank_breaker or CircuitBreaker(
            name=reranker.get_provider_name() if reranker else "reranker"
        )
        self._rrf_k = rrf_k
        self._candidate_multiplier = max(1, candidate_multiplier)

    @property
    def rerank_breaker(self) -> CircuitBreaker:
        return self._rerank_breaker

    @property
    def reranker(self) -> IReranker | None:
        return self._reranker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        options: RetrieveOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RetrievalResponse:
        """Return up to ``options.top_k`` results for *query*.

        Raises
        ------
        ValidationError
            Empty query, ``top_k < 1`` or an unsupported filter operator.
        RetrievalUnavailableError
            Both the vector and the keyword search failed.
        IngestionCancelledError
            *cancel_token* fired before fusion.
        """
        options = options or RetrieveOptions()
        if not query or not query.strip():
            raise ValidationError(message="Query must not be empty")
        if options.top_k < 1:
            raise ValidationError(message=f"top_k must be at least 1 (got {options.top_k})")

        filters = build_filters(
            min_quality=options.min_quality,
            language=options.language,
            course_id=options.course_id,
            extra=options.filters,
        )
        candidate_k = options.top_k * self._candidate_multiplier

        vector_outcome, keyword_outcome = await asyncio.gather(
            self._vector_search(query, filters, candidate_k),
            self._index.search_keyword(query, filters, candidate_k),
            return_exceptions=True,
        )
        for outcome in (vector_outcome, keyword_outcome):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome

        failed_sources: list[str] = []
        vector_hits = self._surviving(SOURCE_VECTOR, vector_outcome, failed_sources)
        keyword_hits = self._surviving(SOURCE_KEYWORD, keyword_outcome, failed_sources)
        if len(failed_sources) == 2:
            raise RetrievalUnavailableError(
                message=f"Vector search failed ({vector_outcome}); "
                f"keyword search failed ({keyword_outcome})"
            )

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        fused = reciprocal_rank_fusion(vector_hits, keyword_hits, k=self._rrf_k)
        results, reranked = await self._maybe_rerank(query, fused, options)
        results = [r for r in results if matches_filters(r.metadata, filters)][: options.top_k]

        logger.info(
            "retrieval_complete",
            vector_hits=len(vector_hits),
            keyword_hits=len(keyword_hits),
            fused=len(fused),
            returned=len(results),
            reranked=reranked,
            partial=bool(failed_sources),
        )
        return RetrievalResponse(
            query=query,
            results=results,
            partial=bool(failed_sources),
            reranked=reranked,
            failed_sources=failed_sources,
            total_candidates=len(fused),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _vector_search(
        self, query: str, filters: dict[str, Any], top_k: int
    ) -> list[SearchHit]:
        vector = await self._embedder.embed_query(query)
        return await self._index.search(vector, filters, top_k)

    @staticmethod
    def _surviving(
        source: str, outcome: Any, failed_sources: list[str]
    ) -> list[SearchHit]:
        if isinstance(outcome, BaseException):
            failed_sources.append(source)
            logger.warning(
                "search_path_failed",
                source=source,
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
            return []
        return outcome

    async def _maybe_rerank(
        self,
        query: str,
        fused: list[SearchResult],
        options: RetrieveOptions,
    ) -> tuple[list[SearchResult], bool]:
        """Rerank the head of *fused*; return it unchanged on any failure."""
        if (
            not fused
            or not options.enable_rerank
            or self._reranker is None
            or not self._reranker.is_available()
        ):
            return fused, False

        cap = options.top_k * self._candidate_multiplier
        candidates = fused[:cap]
        texts = [c.text for c in candidates]
        try:
            scored = await guarded_call(
                lambda: self._reranker.rerank(query, texts, top_n=len(texts)),
                policy=self._policy,
                breaker=self._rerank_breaker,
                operation="rerank",
                provider_name=self._reranker.get_provider_name(),
                error_cls=RerankServiceError,
            )
            reranked = self._apply_rerank_scores(candidates, scored, fused[cap:])
        except Exception as exc:
            logger.warning(
                "rerank_failed_using_fused_order",
                provider=self._reranker.get_provider_name(),
                candidates=len(candidates),
                error=str(exc),
            )
            return fused, False

        return reranked, True

    def _apply_rerank_scores(
        self,
        candidates: list[SearchResult],
        scored: list[tuple[int, float]],
        rest: list[SearchResult],
    ) -> list[SearchResult]:
        """Order the reranked head, then the unscored tail in fused order.

        The tail keeps ``source`` and ``fused_score`` from fusion but gets
        scores strictly below the lowest reranked score, so the list stays
        score-descending on one scale.
        """
        rescored: dict[int, SearchResult] = {}
        for index, score in scored:
            if not 0 <= index < len(candidates):
                raise RerankServiceError(
                    message=f"Reranker returned out-of-range index {index}",
                    provider_name=self._reranker.get_provider_name(),
                    retryable=False,
                )
            if index in rescored:
                continue
            rescored[index] = candidates[index].model_copy(
                update={
                    "score": float(score),
                    "rerank_score": float(score),
                    "source": SearchSource.RERANKED,
                }
            )

        ordered = sorted(
            rescored.values(), key=lambda r: (-r.score, *tie_break_key(r))
        )
        tail = [c for i, c in enumerate(candidates) if i not in rescored] + rest
        return ordered + _rank_below(ordered, tail)


def _rank_below(head: list[SearchResult], tail: list[SearchResult]) -> list[SearchResult]:
    if not head or not tail:
        return tail
    floor = head[-1].score
    step = 1.0 / (len(tail) + 1)
    return [
        result.model_copy(update={"score": floor - step * (position + 1)})
        for position, result in enumerate(tail)
    ]
