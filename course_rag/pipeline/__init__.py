"""Facade and worker pool for the course_rag ingestion/retrieval core."""

from course_rag.pipeline.core import RAGCore
from course_rag.pipeline.worker_pool import IngestionJob, IngestionWorkerPool, JobOutcome

__all__ = [
    "IngestionJob",
    "IngestionWorkerPool",
    "JobOutcome",
    "RAGCore",
]
