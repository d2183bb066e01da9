"""Bounded worker pool for document ingestion jobs.

Jobs are submitted explicitly and consumed by a fixed number of worker
tasks from an ``asyncio.Queue``.  Each finished job posts a
:class:`JobOutcome` onto a result queue keyed by its job id; the pool holds
no other shared state.

    submit(doc A) --+                 +--> worker 1 --+
    submit(doc B) --+--> job queue ---+--> worker 2 --+--> result queue
    submit(doc C) --+                 +--> worker N --+

A job that raises becomes an outcome carrying the error; sibling jobs never
see it.  ``workers`` bounds how many documents are in the pipeline at once,
on top of the per-document batch concurrency inside each job.
Cancellation is cooperative: queued jobs are skipped, running jobs stop
scheduling new batches and in-flight external calls finish.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from course_rag.models.document import Document
from course_rag.models.ingestion import IngestionReport, IngestOptions
from course_rag.utils.concurrency import CancellationToken
from course_rag.utils.errors import IngestionCancelledError

logger = structlog.get_logger(logger_name=__name__)

IngestHandler = Callable[
    [Document, IngestOptions, CancellationToken], Awaitable[IngestionReport]
]


@dataclass(frozen=True)
class IngestionJob:
    job_id: str
    document: Document
    options: IngestOptions


@dataclass(frozen=True)
class JobOutcome:
    """Result message for one job: a report, or the error that stopped it."""

    job_id: str
    document_id: str
    report: IngestionReport | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None


class IngestionWorkerPool:
    """Runs ingestion jobs on ``workers`` concurrent tasks.

    Parameters
    ----------
    handler:
        Coroutine function that ingests one document.
    workers:
        Number of worker tasks.
    cancel_token:
        Shared cancellation signal; a fresh one is created when omitted.
    """

    def __init__(
        self,
        handler: IngestHandler,
        workers: int = 4,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._handler = handler
        self._worker_count = max(1, workers)
        self._token = cancel_token or CancellationToken()
        self._jobs: asyncio.Queue[IngestionJob | None] = asyncio.Queue()
        self._results: asyncio.Queue[JobOutcome] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def cancel_token(self) -> CancellationToken:
        return self._token

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def __aenter__(self) -> IngestionWorkerPool:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"ingestion-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.debug("worker_pool_started", workers=self._worker_count)

    async def close(self) -> None:
        """Let queued jobs drain, then stop every worker."""
        if not self._tasks:
            return
        for _ in self._tasks:
            await self._jobs.put(None)
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.debug("worker_pool_stopped")

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._token.cancel(reason)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def submit(self, document: Document, options: IngestOptions | None = None) -> str:
        """Queue *document* for ingestion and return its job id."""
        job = IngestionJob(
            job_id=uuid.uuid4().hex,
            document=document,
            options=options or IngestOptions(),
        )
        await self._jobs.put(job)
        return job.job_id

    async def next_outcome(self) -> JobOutcome:
        """Wait for the next finished job, in completion order."""
        return await self._results.get()

    async def run(
        self, documents: list[Document], options: IngestOptions | None = None
    ) -> list[JobOutcome]:
        """Submit *documents* and collect their outcomes in submission order."""
        self.start()
        job_ids = [await self.submit(doc, options) for doc in documents]
        outcomes: dict[str, JobOutcome] = {}
        while len(outcomes) < len(job_ids):
            outcome = await self.next_outcome()
            outcomes[outcome.job_id] = outcome
        return [outcomes[job_id] for job_id in job_ids]

    async def _worker(self, number: int) -> None:
        while True:
            job = await self._jobs.get()
            try:
                if job is None:
                    return
                await self._results.put(await self._execute(job, number))
            finally:
                self._jobs.task_done()

    async def _execute(self, job: IngestionJob, number: int) -> JobOutcome:
        doc_id = job.document.document_id
        if self._token.cancelled:
            return JobOutcome(
                job_id=job.job_id,
                document_id=doc_id,
                error=IngestionCancelledError(message=self._token.reason or "Ingestion was cancelled"),
            )
        try:
            report = await self._handler(job.document, job.options, self._token)
        except Exception as exc:
            logger.error(
                "ingestion_job_failed",
                worker=number,
                document_id=doc_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return JobOutcome(job_id=job.job_id, document_id=doc_id, error=exc)
        return JobOutcome(job_id=job.job_id, document_id=doc_id, report=report)
