"""Application settings loaded from environment variables via pydantic-settings.

Sources, in priority order:

1. **Environment variables** prefixed with ``COURSE_RAG_`` -- e.g.
   ``COURSE_RAG_JINA_API_KEY`` maps to ``jina_api_key``.
2. **.env file** in the working directory (local development only).
3. The defaults declared on the class.

Empty API keys mean "not configured": :func:`course_rag.main.build_core`
skips providers without credentials and falls through to the next option.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from course_rag.config.constants import DEFAULT_QUALITY_WEIGHTS, DISTANCE_METRICS


class Settings(BaseSettings):
    """course_rag settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="COURSE_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Chunking ===
    max_chunk_size: int = Field(default=1000, gt=0)
    min_chunk_size: int = Field(default=100, gt=0)
    overlap_size: int = Field(default=50, ge=0)
    semantic_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    # === Quality gate ===
    quality_minimum: float = Field(default=50.0, ge=0.0, le=100.0)
    quality_recommended: float = Field(default=70.0, ge=0.0, le=100.0)
    quality_premium: float = Field(default=85.0, ge=0.0, le=100.0)
    language_min_confidence: float = Field(default=0.2, ge=0.0, le=1.0)
    quality_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_QUALITY_WEIGHTS)
    )

    # === Embedding ===
    embedding_provider: str = "jina"  # "jina", "openai" or "" for auto
    embedding_batch_size: int = Field(default=10, gt=0)
    embedding_concurrency: int = Field(default=5, gt=0)
    vector_dimension: int = Field(default=1024, gt=0)
    distance_metric: str = "cosine"

    # === Index ===
    index_batch_size: int = Field(default=100, gt=0)
    index_concurrency: int = Field(default=5, gt=0)
    vector_store_provider: str = "chromadb"  # "chromadb" or "memory"

    # === Retrieval ===
    default_top_k: int = Field(default=10, gt=0)
    rrf_k: int = Field(default=60, gt=0)
    rerank_candidate_multiplier: int = Field(default=3, gt=0)
    rerank_enabled: bool = True

    # === Resilience ===
    retry_max_attempts: int = Field(default=3, gt=0)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    retry_max_delay: float = Field(default=30.0, ge=0.0)
    retry_jitter: float = Field(default=0.25, ge=0.0, le=1.0)
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_reset_seconds: float = Field(default=60.0, gt=0.0)
    external_call_timeout: float = Field(default=30.0, gt=0.0)

    # === Ingestion ===
    ingestion_workers: int = Field(default=4, gt=0)

    # === Jina (embeddings + reranker) ===
    jina_api_key: str = ""
    jina_base_url: str = "https://api.jina.ai/v1"
    jina_embedding_model: str = "jina-embeddings-v3"
    jina_reranker_model: str = "jina-reranker-v2-base-multilingual"

    # === OpenAI-compatible embeddings ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_embedding_model: str = "text-embedding-3-small"

    # === ChromaDB ===
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "course_rag_chunks"

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError("overlap_size must be smaller than max_chunk_size")
        if self.min_chunk_size > self.max_chunk_size:
            raise ValueError("min_chunk_size must not exceed max_chunk_size")
        if not (self.quality_minimum <= self.quality_recommended <= self.quality_premium):
            raise ValueError(
                "quality thresholds must satisfy minimum <= recommended <= premium"
            )
        if self.distance_metric not in DISTANCE_METRICS:
            raise ValueError(
                f"distance_metric must be one of {sorted(DISTANCE_METRICS)}"
            )
        unknown = set(self.quality_weights) - set(DEFAULT_QUALITY_WEIGHTS)
        if unknown:
            raise ValueError(f"unknown quality weight keys: {sorted(unknown)}")
        if sum(self.quality_weights.values()) <= 0:
            raise ValueError("quality_weights must have a positive sum")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have credentials configured."""
        providers: list[str] = []
        if self.jina_api_key:
            providers.append("jina")
        if self.openai_api_key:
            providers.append("openai")
        return providers

    def reranker_configured(self) -> bool:
        return self.rerank_enabled and bool(self.jina_api_key)
