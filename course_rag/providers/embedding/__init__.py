"""Embedding client implementations.

Two implementations of IEmbeddingClient:
    1. JinaEmbeddingClient   -- jina-embeddings-v3 (1024 dims, multilingual).
       Default; shares its API key with the Jina reranker.
    2. OpenAIEmbeddingClient -- text-embedding-3-small or any
       OpenAI-compatible endpoint.
"""

from course_rag.providers.embedding.jina_embedding_client import JinaEmbeddingClient
from course_rag.providers.embedding.openai_embedding_client import OpenAIEmbeddingClient

__all__ = ["JinaEmbeddingClient", "OpenAIEmbeddingClient"]
