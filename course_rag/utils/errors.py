"""Custom exception hierarchy for course_rag.

All library exceptions inherit from :class:`CourseRAGError`, which carries an
optional ``provider_name`` so callers can tell which external service
(e.g. "jina_embedding", "chromadb", "bm25") caused the failure.

The hierarchy is organized by how callers are expected to react:

    CourseRAGError  (base -- catch-all for any course_rag error)
    +-- ValidationError            (bad chunking config, dimension mismatch)
    +-- ConfigurationError         (startup / missing config)
    +-- ExternalServiceError       (an external call failed after retries)
    |   +-- EmbeddingServiceError
    |   +-- VectorStoreError
    |   +-- KeywordIndexError
    |   +-- RerankServiceError
    +-- ServiceUnavailableError    (circuit breaker open)
    +-- RetrievalUnavailableError  (both search paths failed)
    +-- IngestionCancelledError    (caller cancelled before completion)

Quality-gate rejections and partial failures are *outcomes*, not errors:
they are reported on :class:`~course_rag.models.ingestion.IngestionReport`
and never raised.
"""


class CourseRAGError(Exception):
    """Base exception for all course_rag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets, e.g.
    ``[jina_embedding] HTTP 503``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Structural errors -- surfaced immediately, never retried
# ---------------------------------------------------------------------------

class ValidationError(CourseRAGError):
    """Raised for invalid input before any external call is made."""

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(CourseRAGError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service errors -- retried locally, surfaced after budget exhaustion
# ---------------------------------------------------------------------------

class ExternalServiceError(CourseRAGError):
    """Raised when an external service call fails.

    ``retryable`` tells the retry policy whether another attempt could
    succeed (timeouts, 5xx, rate limits) or is pointless (4xx auth errors,
    malformed responses).
    """

    def __init__(
        self,
        message: str = "External service call failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable


class EmbeddingServiceError(ExternalServiceError):
    """Raised when the embedding service fails or returns bad vectors."""

    def __init__(
        self,
        message: str = "Embedding service call failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=retryable)


class VectorStoreError(ExternalServiceError):
    """Raised when a vector-store read or write fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=retryable)


class KeywordIndexError(ExternalServiceError):
    """Raised when a keyword-index read or write fails."""

    def __init__(
        self,
        message: str = "Keyword index operation failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=retryable)


class RerankServiceError(ExternalServiceError):
    """Raised when the reranking service fails."""

    def __init__(
        self,
        message: str = "Rerank service call failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=retryable)


class ServiceUnavailableError(CourseRAGError):
    """Raised when a circuit breaker is open and calls are short-circuited."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------

class RetrievalUnavailableError(CourseRAGError):
    """Raised when both the vector and keyword search paths fail."""

    def __init__(
        self,
        message: str = "Retrieval is unavailable: all search paths failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionCancelledError(CourseRAGError):
    """Raised when a caller cancels an in-flight ingestion."""

    def __init__(
        self,
        message: str = "Ingestion was cancelled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
