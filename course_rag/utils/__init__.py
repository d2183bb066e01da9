"""Utility modules for course_rag.

- **errors** -- Exception hierarchy rooted at CourseRAGError; external
  failures carry a ``retryable`` flag consumed by the retry policy.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **retry** -- tenacity-backed retry policy and a consecutive-failure
  circuit breaker wrapped around every external call.
- **concurrency** -- semaphore-throttled gather and a cooperative
  cancellation token.
- **text_stats** -- sentence/paragraph segmentation with offsets, token and
  syllable counting used by the chunker and quality assessor.
- **language** -- script-range and stop-word language detection.
"""

# -- Domain exception hierarchy --------------------------------------------
from course_rag.utils.errors import (
    ConfigurationError,
    CourseRAGError,
    EmbeddingServiceError,
    ExternalServiceError,
    IngestionCancelledError,
    KeywordIndexError,
    RerankServiceError,
    RetrievalUnavailableError,
    ServiceUnavailableError,
    ValidationError,
    VectorStoreError,
)

# -- Concurrency and resilience ---------------------------------------------
from course_rag.utils.concurrency import CancellationToken, throttled_gather
from course_rag.utils.retry import CircuitBreaker, CircuitState, RetryPolicy, guarded_call

# -- Structured logging -----------------------------------------------------
from course_rag.utils.logging import configure_logging

__all__ = [
    "CancellationToken",
    "CircuitBreaker",
    "CircuitState",
    "ConfigurationError",
    "CourseRAGError",
    "EmbeddingServiceError",
    "ExternalServiceError",
    "IngestionCancelledError",
    "KeywordIndexError",
    "RerankServiceError",
    "RetrievalUnavailableError",
    "RetryPolicy",
    "ServiceUnavailableError",
    "ValidationError",
    "VectorStoreError",
    "configure_logging",
    "guarded_call",
    "throttled_gather",
]
