"""Public interface definitions for all external collaborators.

Every external service the core talks to is accessed through the abstract
base classes defined here.  Concrete adapters live in
``course_rag/providers/`` and are wired together in ``course_rag/main.py``.

    Interface          ->  Concrete implementations
    ---------------------------------------------------------------
    IEmbeddingClient   ->  JinaEmbeddingClient, OpenAIEmbeddingClient
    IVectorStore       ->  ChromaDBVectorStore, InMemoryVectorStore
    IKeywordIndex      ->  BM25KeywordIndex
    IReranker          ->  JinaReranker
"""

from course_rag.interfaces.embedding_client import IEmbeddingClient
from course_rag.interfaces.keyword_index import IKeywordIndex
from course_rag.interfaces.reranker import IReranker
from course_rag.interfaces.vector_store import IVectorStore

__all__ = [
    "IEmbeddingClient",
    "IKeywordIndex",
    "IReranker",
    "IVectorStore",
]
