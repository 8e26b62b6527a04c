"""Job queue and chunked, bounded-concurrency page processing.

The scheduler owns the in-memory queue and is the single writer of job state.
Chunk workers only return results (or raise `ChunkFailure`); every change to
``status``, ``processed_pages``, ``progress`` and ``details`` goes through
`JobScheduler._update` under one ``asyncio.Lock`` and is persisted via the job
store straight away. Readers receive copies.

Per job::

    queued -> analyzing -> processing -> completed
       |          |             |
       +----------+-------------+-> failed

Chunks run in waves of ``concurrent_chunks``; a wave fully settles before the
next one starts, and the first failing chunk stops further waves.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Sequence

from bulk_ocr.errors import (
    ChunkFailure,
    ConfigurationError,
    InvalidJobError,
    JobNotFoundError,
    JobStateError,
)
from bulk_ocr.logging_setup import job_id_var
from bulk_ocr.models.jobs import (
    Chunk,
    FileType,
    Job,
    JobStatus,
    PageResult,
    ProcessingDetail,
    build_chunks,
    build_waves,
    can_transition,
    clone_job,
    compute_progress,
    utcnow,
)
from bulk_ocr.utils.logging_utils import stage_marker, structured_log

from .chunk_processor import ChunkProcessor
from .interfaces import MetricsClient, PageImageSource
from .job_store import JobStore
from .metrics import NullMetrics
from .ocr_client import RetryingOCRClient

LOG = logging.getLogger("scheduler")

INTERRUPTED_ERROR = "Processing was interrupted before the job finished"


@dataclass(slots=True)
class ProcessingSettings:
    chunk_size: int = 10
    concurrent_chunks: int = 3
    max_concurrent_jobs: int = 1

    def __post_init__(self) -> None:
        for name in ("chunk_size", "concurrent_chunks", "max_concurrent_jobs"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")


class JobScheduler:
    """Drains queued jobs and drives each one to a terminal state."""

    def __init__(
        self,
        *,
        client: RetryingOCRClient,
        store: JobStore,
        page_source: PageImageSource,
        settings: ProcessingSettings | None = None,
        metrics: MetricsClient | None = None,
        chunk_processor: ChunkProcessor | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or ProcessingSettings()
        self.metrics = metrics or NullMetrics()
        self.chunk_processor = chunk_processor or ChunkProcessor(
            client=client, store=store, page_source=page_source
        )
        self._queue: deque[Job] = deque()
        self._active: dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._workers: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    # Public API --------------------------------------------------------------
    def enqueue(self, job: Job) -> Job:
        """Validate, persist and queue a job; starts draining when idle."""
        if not job.id or not str(job.id).strip():
            raise InvalidJobError("Job must have a non-empty id")
        if not isinstance(job.total_pages, int) or job.total_pages < 1:
            raise InvalidJobError(
                "Job must have at least one page", details={"total_pages": job.total_pages}
            )
        if self._is_tracked(job.id):
            raise InvalidJobError(f"Job {job.id} is already queued or running")
        if job.file_type is FileType.IMAGE and job.total_pages != 1:
            raise InvalidJobError(
                "Image jobs have exactly one page", details={"total_pages": job.total_pages}
            )
        if self.store.get_job(job.id) is not None:
            raise InvalidJobError(
                f"Job {job.id} already exists; retry it or enqueue under a new id"
            )
        queued = replace(
            clone_job(job),
            status=JobStatus.QUEUED,
            processed_pages=0,
            progress=0.0,
            error=None,
            result=None,
            started_at=None,
            completed_at=None,
        )
        queued.details.append(ProcessingDetail(stage="queued", message="Job added to processing queue"))
        self.store.save_job(queued)
        self._queue.append(queued)
        structured_log(
            LOG,
            logging.INFO,
            "job_enqueued",
            job_id=queued.id,
            file_name=queued.file_name,
            total_pages=queued.total_pages,
            queue_length=len(self._queue),
        )
        self._ensure_draining()
        return clone_job(queued)

    def get_queue_snapshot(self) -> list[Job]:
        """Running jobs first, then queued jobs in queue order; all copies."""
        return [clone_job(job) for job in (*self._active.values(), *self._queue)]

    def remove(self, job_id: str) -> Job:
        """Remove a job that has not started yet."""
        if job_id in self._active:
            raise JobStateError(f"Job {job_id} is already being processed")
        for job in self._queue:
            if job.id == job_id:
                self._queue.remove(job)
                self.store.delete_job(job_id)
                structured_log(
                    LOG, logging.INFO, "job_removed", job_id=job_id, queue_length=len(self._queue)
                )
                return clone_job(job)
        if self.store.get_job(job_id) is not None:
            raise JobStateError(f"Job {job_id} is not queued")
        raise JobNotFoundError(f"Unknown job: {job_id}")

    def retry(self, job_id: str) -> Job:
        """Reset a failed job to ``queued`` and put it back on the queue."""
        if self._is_tracked(job_id):
            raise JobStateError(f"Job {job_id} is already queued or running")
        stored = self.store.get_job(job_id)
        if stored is None:
            raise JobNotFoundError(f"Unknown job: {job_id}")
        if stored.status is not JobStatus.FAILED:
            raise JobStateError(
                f"Only failed jobs can be retried (status={stored.status.value})"
            )
        stored.details.append(ProcessingDetail(stage="queued", message="Job re-queued for retry"))
        reset = self.store.update_job(
            job_id,
            status=JobStatus.QUEUED,
            processed_pages=0,
            progress=0.0,
            error=None,
            result=None,
            started_at=None,
            completed_at=None,
            details=stored.details,
        )
        self._queue.append(reset)
        structured_log(
            LOG, logging.INFO, "job_retry_enqueued", job_id=job_id, queue_length=len(self._queue)
        )
        self._ensure_draining()
        return clone_job(reset)

    def start(self) -> None:
        """Begin draining anything queued before an event loop was running."""
        self._ensure_draining()

    async def recover_interrupted(self) -> list[str]:
        """Fail stored jobs a previous process left unfinished.

        Nothing resumes a half-processed job, so they are marked ``failed``
        and become eligible for `retry`.
        """
        stored_jobs = await asyncio.to_thread(self.store.list_jobs)
        recovered: list[str] = []
        for job in stored_jobs:
            if job.status.is_terminal or self._is_tracked(job.id):
                continue
            await self._fail(job, INTERRUPTED_ERROR, stage="recovery")
            recovered.append(job.id)
        return recovered

    async def wait_idle(self) -> None:
        """Block until the queue is empty and no job is running."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Cancel the drain workers and fail every job left unfinished.

        Both the running and the still-queued jobs end ``failed`` so they can
        be retried once the service is back.
        """
        unfinished = [*self._active.values(), *self._queue]
        self._queue.clear()
        workers = list(self._workers)
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._active.clear()
        for job in unfinished:
            if not job.status.is_terminal:
                await self._fail(job, INTERRUPTED_ERROR, stage="shutdown")
        self._idle.set()

    # Queue draining ----------------------------------------------------------
    def _is_tracked(self, job_id: str) -> bool:
        return job_id in self._active or any(job.id == job_id for job in self._queue)

    def _ensure_draining(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        wanted = min(self.settings.max_concurrent_jobs, len(self._queue) + len(self._active))
        while len(self._workers) < wanted:
            task = loop.create_task(self._drain())
            self._workers.add(task)
            task.add_done_callback(self._worker_done)
        if self._workers:
            self._idle.clear()

    def _worker_done(self, task: asyncio.Task[None]) -> None:
        self._workers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOG.error("drain_worker_crashed", exc_info=task.exception())
        if not self._workers:
            if self._queue:
                self._ensure_draining()
            else:
                self._idle.set()

    async def _drain(self) -> None:
        while self._queue:
            job = self._queue.popleft()
            self._active[job.id] = job
            try:
                await self.run_job(job)
            finally:
                self._active.pop(job.id, None)

    # Job execution -----------------------------------------------------------
    async def run_job(self, job: Job) -> Job:
        """Drive ``job`` from ``queued`` to ``completed`` or ``failed``."""
        token = job_id_var.set(job.id)
        started = time.perf_counter()
        try:
            async with stage_marker(
                LOG, stage="job", job_id=job.id, total_pages=job.total_pages
            ) as marker:
                await self._execute(job)
                marker.add_completion_fields(
                    status=job.status.value, processed_pages=job.processed_pages
                )
            return clone_job(job)
        finally:
            self.metrics.observe_latency(
                "job_latency_seconds", time.perf_counter() - started, stage="job"
            )
            if job.status.is_terminal:
                self.metrics.increment(f"jobs_{job.status.value}_total", stage="job")
            job_id_var.reset(token)

    async def _execute(self, job: Job) -> None:
        try:
            self.client.validate_configuration()
        except ConfigurationError as exc:
            await self._fail(job, str(exc), stage="configuration")
            return
        try:
            await self._update(
                job,
                status=JobStatus.ANALYZING,
                detail=ProcessingDetail(stage="analyzing", message="Analyzing document structure"),
                started_at=utcnow(),
            )
            chunks = build_chunks(job.total_pages, self.settings.chunk_size)
            waves = build_waves(chunks, self.settings.concurrent_chunks)
            structured_log(
                LOG,
                logging.INFO,
                "job_chunks_planned",
                job_id=job.id,
                chunk_count=len(chunks),
                chunk_size=self.settings.chunk_size,
                concurrent_chunks=self.settings.concurrent_chunks,
            )
            await self._update(
                job,
                status=JobStatus.PROCESSING,
                detail=ProcessingDetail(
                    stage="processing",
                    message=f"Processing {job.total_pages} page(s) in {len(chunks)} chunk(s)",
                ),
            )
            for wave_index, wave in enumerate(waves):
                first, last = wave[0].pages[0], wave[-1].pages[-1]
                await self._update(
                    job,
                    detail=ProcessingDetail(
                        stage="processing", message=f"Processing pages {first} to {last}"
                    ),
                )
                failure = await self._run_wave(job, wave, wave_index)
                if failure is not None:
                    chunk, exc = failure
                    await self._fail(
                        job, f"Chunk {chunk.index + 1} failed: {exc}", stage="processing"
                    )
                    return
            await self._complete(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - any unexpected fault fails the job
            LOG.exception("job_processing_error", extra={"job_id": job.id})
            await self._fail(job, str(exc) or "Unknown error occurred", stage="error")

    async def _run_wave(
        self, job: Job, wave: Sequence[Chunk], wave_index: int
    ) -> tuple[Chunk, BaseException] | None:
        outcomes = await asyncio.gather(
            *(self._run_chunk(job, chunk) for chunk in wave), return_exceptions=True
        )
        for chunk, outcome in zip(wave, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                structured_log(
                    LOG,
                    logging.WARNING,
                    "chunk_failed",
                    job_id=job.id,
                    wave=wave_index,
                    chunk_index=chunk.index,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                return chunk, outcome
        return None

    async def _run_chunk(self, job: Job, chunk: Chunk) -> list[PageResult]:
        try:
            results = await self.chunk_processor.process(job, chunk.pages)
        except ChunkFailure as exc:
            await self._record_progress(job, len(exc.completed))
            raise
        await self._record_progress(job, len(results))
        return results

    async def _record_progress(self, job: Job, succeeded: int) -> None:
        async with self._lock:
            processed = min(job.total_pages, job.processed_pages + succeeded)
            await self._apply(
                job,
                detail=ProcessingDetail(
                    stage="progress",
                    message=f"Processed {processed} of {job.total_pages} pages",
                ),
                processed_pages=processed,
                progress=compute_progress(processed, job.total_pages),
            )
        structured_log(
            LOG,
            logging.INFO,
            "job_progress",
            job_id=job.id,
            processed_pages=job.processed_pages,
            total_pages=job.total_pages,
            progress=round(job.progress, 2),
        )

    async def _complete(self, job: Job) -> None:
        pages = await asyncio.to_thread(self.store.get_page_results, job.id)
        text = "\n\n".join(page.text for page in pages if page.page_number <= job.total_pages)
        await self._update(
            job,
            status=JobStatus.COMPLETED,
            detail=ProcessingDetail(
                stage="completed", message="Processing completed successfully"
            ),
            processed_pages=job.total_pages,
            progress=100.0,
            result=text,
            completed_at=utcnow(),
        )

    async def _fail(self, job: Job, error: str, *, stage: str) -> None:
        await self._update(
            job,
            status=JobStatus.FAILED,
            detail=ProcessingDetail(stage="error", message=f"Processing failed during {stage}"),
            error=error,
        )

    async def _update(
        self,
        job: Job,
        *,
        status: JobStatus | None = None,
        detail: ProcessingDetail | None = None,
        **fields: Any,
    ) -> None:
        async with self._lock:
            await self._apply(job, status=status, detail=detail, **fields)

    async def _apply(
        self,
        job: Job,
        *,
        status: JobStatus | None = None,
        detail: ProcessingDetail | None = None,
        **fields: Any,
    ) -> None:
        """Mutate ``job`` and persist the change; callers hold ``self._lock``."""
        updates: dict[str, Any] = dict(fields)
        if status is not None and status is not job.status:
            if not can_transition(job.status, status):
                raise JobStateError(
                    f"Illegal transition {job.status.value} -> {status.value}",
                    details={"job_id": job.id},
                )
            updates["status"] = status
        for key, value in updates.items():
            setattr(job, key, value)
        if detail is not None:
            job.details.append(detail)
            updates["details"] = list(job.details)
        await asyncio.to_thread(self.store.update_job, job.id, **updates)
        if "status" in updates:
            structured_log(
                LOG,
                logging.ERROR if job.status is JobStatus.FAILED else logging.INFO,
                "job_status_transition",
                job_id=job.id,
                status=job.status.value,
                processed_pages=job.processed_pages,
                total_pages=job.total_pages,
                error=job.error,
            )


__all__ = ["JobScheduler", "ProcessingSettings"]
