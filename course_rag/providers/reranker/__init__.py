"""Reranker implementations."""

from course_rag.providers.reranker.jina_reranker import JinaReranker

__all__ = ["JinaReranker"]
