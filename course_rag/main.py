"""Composition root for the course_rag core.

Wires providers and services together via dependency injection and returns
a ready :class:`~course_rag.pipeline.core.RAGCore`.  Settings come from
``config/config.yaml`` plus ``COURSE_RAG_*`` environment overrides unless a
:class:`Settings` instance is passed in.
"""

from __future__ import annotations

import structlog

from course_rag.config.loader import load_settings
from course_rag.config.settings import Settings
from course_rag.interfaces.embedding_client import IEmbeddingClient
from course_rag.interfaces.reranker import IReranker
from course_rag.interfaces.vector_store import IVectorStore
from course_rag.models.document import ChunkingOptions
from course_rag.pipeline.core import RAGCore
from course_rag.providers.embedding.jina_embedding_client import JinaEmbeddingClient
from course_rag.providers.embedding.openai_embedding_client import OpenAIEmbeddingClient
from course_rag.providers.keyword.bm25_index import BM25KeywordIndex
from course_rag.providers.reranker.jina_reranker import JinaReranker
from course_rag.providers.vector_store.chromadb_store import ChromaDBVectorStore
from course_rag.providers.vector_store.memory_store import InMemoryVectorStore
from course_rag.services.chunker import TextChunker
from course_rag.services.document_analyzer import DocumentAnalyzer
from course_rag.services.embedding_orchestrator import EmbeddingOrchestrator
from course_rag.services.index_manager import IndexManager
from course_rag.services.ingestion_service import IngestionService
from course_rag.services.normalizer import TextNormalizer
from course_rag.services.quality_assessor import QualityAssessor
from course_rag.services.retrieval_service import RetrievalService
from course_rag.utils.errors import ConfigurationError
from course_rag.utils.logging import configure_logging
from course_rag.utils.retry import CircuitBreaker, RetryPolicy

_logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_client(app_settings: Settings) -> IEmbeddingClient:
    """Select the embedding client.

    The configured ``embedding_provider`` wins when it has credentials;
    otherwise the first provider with credentials is used, Jina first.
    """
    builders = {
        "jina": lambda: JinaEmbeddingClient(settings=app_settings),
        "openai": lambda: OpenAIEmbeddingClient(settings=app_settings),
    }
    available = app_settings.get_available_embedding_providers()
    if not available:
        raise ConfigurationError(
            message="No embedding provider configured; set COURSE_RAG_JINA_API_KEY "
            "or COURSE_RAG_OPENAI_API_KEY"
        )

    preferred = app_settings.embedding_provider
    if preferred and preferred not in builders:
        raise ConfigurationError(message=f"Unknown embedding provider {preferred!r}")
    name = preferred if preferred in available else available[0]
    if preferred and name != preferred:
        _logger.warning(
            "embedding_provider_fallback",
            preferred=preferred,
            using=name,
            reason="no credentials for preferred provider",
        )
    return builders[name]()


def _build_vector_store(app_settings: Settings) -> IVectorStore:
    if app_settings.vector_store_provider == "memory":
        return InMemoryVectorStore()
    if app_settings.vector_store_provider == "chromadb":
        return ChromaDBVectorStore(
            persist_directory=app_settings.chromadb_persist_dir,
            collection_name=app_settings.chromadb_collection,
        )
    raise ConfigurationError(
        message=f"Unknown vector store provider {app_settings.vector_store_provider!r}"
    )


def _build_reranker(app_settings: Settings) -> IReranker | None:
    if app_settings.reranker_configured():
        return JinaReranker(settings=app_settings)
    return None


def _breaker(name: str, app_settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        name=name,
        failure_threshold=app_settings.circuit_failure_threshold,
        reset_timeout=app_settings.circuit_reset_seconds,
    )


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_core(
    custom_settings: Settings | None = None,
    *,
    embedding_client: IEmbeddingClient | None = None,
    vector_store: IVectorStore | None = None,
    reranker: IReranker | None = None,
    configure_logs: bool = True,
) -> RAGCore:
    """Construct every provider and service and return the facade.

    Explicit provider arguments replace the settings-driven choice, which
    is how tests and notebooks plug in fakes or in-memory stores.
    """
    s = custom_settings or load_settings()
    if configure_logs:
        configure_logging(log_level=s.log_level, app_env=s.app_env)

    client = embedding_client or _build_embedding_client(s)
    store = vector_store or _build_vector_store(s)
    rerank = reranker if reranker is not None else _build_reranker(s)
    keyword_index = BM25KeywordIndex()

    policy = RetryPolicy(
        max_attempts=s.retry_max_attempts,
        base_delay=s.retry_base_delay,
        max_delay=s.retry_max_delay,
        jitter=s.retry_jitter,
        timeout=s.external_call_timeout,
    )

    embedder = EmbeddingOrchestrator(
        client,
        dimension=s.vector_dimension,
        policy=policy,
        breaker=_breaker(client.get_provider_name(), s),
        batch_size=s.embedding_batch_size,
        concurrency=s.embedding_concurrency,
    )
    index = IndexManager(
        store,
        keyword_index,
        dimension=s.vector_dimension,
        metric=s.distance_metric,
        policy=policy,
        vector_breaker=_breaker(store.get_provider_name(), s),
        keyword_breaker=_breaker(keyword_index.get_provider_name(), s),
        batch_size=s.index_batch_size,
        concurrency=s.index_concurrency,
    )
    ingestion = IngestionService(
        embedder,
        index,
        normalizer=TextNormalizer(language_min_confidence=s.language_min_confidence),
        assessor=QualityAssessor(
            weights=s.quality_weights,
            premium=s.quality_premium,
            recommended=s.quality_recommended,
            minimum=s.quality_minimum,
        ),
        chunker=TextChunker(semantic_threshold=s.semantic_threshold),
        analyzer=DocumentAnalyzer(),
        quality_minimum=s.quality_minimum,
        chunking=ChunkingOptions(
            max_size=s.max_chunk_size,
            min_size=s.min_chunk_size,
            overlap=s.overlap_size,
        ),
    )
    retrieval = RetrievalService(
        embedder,
        index,
        reranker=rerank,
        policy=policy,
        rerank_breaker=_breaker(rerank.get_provider_name() if rerank else "reranker", s),
        rrf_k=s.rrf_k,
        candidate_multiplier=s.rerank_candidate_multiplier,
    )

    _logger.info(
        "course_rag_ready",
        embedding_provider=client.get_provider_name(),
        vector_store=store.get_provider_name(),
        keyword_index=keyword_index.get_provider_name(),
        reranker=rerank.get_provider_name() if rerank else None,
        dimension=s.vector_dimension,
        metric=s.distance_metric,
    )
    return RAGCore(ingestion, retrieval, index, embedder, settings=s)
