"""Vector store implementations.

ChromaDBVectorStore is the default persistent backend; InMemoryVectorStore
is an exact-search numpy store for tests and small deployments.
"""

from course_rag.providers.vector_store.chromadb_store import ChromaDBVectorStore
from course_rag.providers.vector_store.memory_store import InMemoryVectorStore

__all__ = ["ChromaDBVectorStore", "InMemoryVectorStore"]
