"""Keyword index implementations."""

from course_rag.providers.keyword.bm25_index import BM25KeywordIndex

__all__ = ["BM25KeywordIndex"]
