"""Batched, bounded-concurrency embedding of chunks.

The :class:`EmbeddingOrchestrator` owns every call made to the embedding
service.  Chunks are cut into fixed-size batches; at most
``concurrency`` batches are in flight at once.  Each batch call goes
through :func:`~course_rag.utils.retry.guarded_call` (timeout, retry with
backoff and jitter, circuit breaker) and a batch that still fails is
reported per chunk without aborting its siblings.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from course_rag.models.document import Chunk, Embedding
from course_rag.models.ingestion import EmbeddingBatchResult
from course_rag.utils.concurrency import CancellationToken, is_cancelled, throttled_gather
from course_rag.utils.errors import (
    EmbeddingServiceError,
    IngestionCancelledError,
    ServiceUnavailableError,
    ValidationError,
)
from course_rag.utils.retry import CircuitBreaker, RetryPolicy, guarded_call

if TYPE_CHECKING:
    from course_rag.interfaces.embedding_client import IEmbeddingClient

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingOrchestrator:
    """Turns chunks into embeddings through a single embedding client.

    Parameters
    ----------
    client:
        Embedding service adapter.
    dimension:
        Expected vector dimension.  Vectors of any other length fail their
        batch.
    policy:
        Retry and timeout policy applied to every batch call.
    breaker:
        Circuit breaker shared by all calls to *client*.
    batch_size:
        Maximum chunks per embedding request.
    concurrency:
        Maximum batches in flight at once.
    """

    def __init__(
        self,
        client: IEmbeddingClient,
        dimension: int,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        batch_size: int = 10,
        concurrency: int = 5,
    ) -> None:
        if batch_size < 1 or concurrency < 1:
            raise ValidationError(
                message=f"batch_size and concurrency must be positive "
                f"(got {batch_size}, {concurrency})"
            )
        self._client = client
        self._dimension = dimension
        self._policy = policy or RetryPolicy()
        self._breaker = breaker or CircuitBreaker(name=client.get_provider_name())
        self._batch_size = batch_size
        self._semaphore = asyncio.Semaphore(concurrency)

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def client(self) -> IEmbeddingClient:
        return self._client

    @property
    def dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        chunks: list[Chunk],
        cancel_token: CancellationToken | None = None,
    ) -> EmbeddingBatchResult:
        """Embed *chunks*, isolating failures to the batch they occur in.

        Raises
        ------
        ServiceUnavailableError
            If the circuit is already open before any batch is scheduled.
        IngestionCancelledError
            If *cancel_token* fires; batches already in flight finish first.
        """
        if not chunks:
            return EmbeddingBatchResult()
        if self._breaker.is_open():
            raise ServiceUnavailableError(
                message="embedding circuit is open; not scheduling batches",
                provider_name=self._client.get_provider_name(),
            )

        batches = [
            chunks[i : i + self._batch_size]
            for i in range(0, len(chunks), self._batch_size)
        ]
        outcomes = await throttled_gather(
            [self._embed_batch(batch, cancel_token) for batch in batches],
            self._semaphore,
        )

        embeddings: list[Embedding] = []
        failed: list[str] = []
        errors: list[str] = []
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, IngestionCancelledError):
                failed.extend(c.chunk_id for c in batch)
            elif isinstance(outcome, BaseException):
                failed.extend(c.chunk_id for c in batch)
                errors.append(str(outcome))
                logger.warning(
                    "embedding_batch_failed",
                    provider=self._client.get_provider_name(),
                    batch_size=len(batch),
                    first_chunk_index=batch[0].index,
                    error=str(outcome),
                )
            else:
                embeddings.extend(outcome)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        logger.info(
            "embedding_complete",
            provider=self._client.get_provider_name(),
            chunks=len(chunks),
            batches=len(batches),
            embedded=len(embeddings),
            failed=len(failed),
        )
        return EmbeddingBatchResult(
            embeddings=embeddings, failed_chunk_ids=failed, errors=errors
        )

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query under the same retry/breaker discipline."""
        vectors = await guarded_call(
            lambda: self._call_client([text], is_query=True),
            policy=self._policy,
            breaker=self._breaker,
            operation="embed_query",
            provider_name=self._client.get_provider_name(),
            error_cls=EmbeddingServiceError,
        )
        return vectors[0]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_batch(
        self, batch: list[Chunk], cancel_token: CancellationToken | None
    ) -> list[Embedding]:
        # Runs after the semaphore slot is acquired, so a cancellation
        # observed here stops this batch from being sent.
        if is_cancelled(cancel_token):
            raise IngestionCancelledError(message=cancel_token.reason or "Embedding cancelled")

        texts = [c.text for c in batch]
        vectors = await guarded_call(
            lambda: self._call_client(texts),
            policy=self._policy,
            breaker=self._breaker,
            operation="embed_batch",
            provider_name=self._client.get_provider_name(),
            error_cls=EmbeddingServiceError,
        )
        model = self._client.get_model_name()
        return [
            Embedding(chunk_id=chunk.chunk_id, vector=vector, model=model)
            for chunk, vector in zip(batch, vectors)
        ]

    async def _call_client(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        """One client call plus response validation.

        Malformed responses count as failures of the call, so they feed the
        circuit breaker like any other service error.
        """
        vectors = await self._client.embed(texts, is_query=is_query)
        provider = self._client.get_provider_name()
        if len(vectors) != len(texts):
            raise EmbeddingServiceError(
                message=f"Expected {len(texts)} vectors, got {len(vectors)}",
                provider_name=provider,
                retryable=False,
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise EmbeddingServiceError(
                    message=f"Vector dimension {len(vector)} does not match "
                    f"collection dimension {self._dimension}",
                    provider_name=provider,
                    retryable=False,
                )
        return [list(map(float, v)) for v in vectors]
