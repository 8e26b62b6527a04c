"""Job, chunk and page result records for the OCR processing pipeline.

* `JobStatus` enumerates the job state machine
  (queued → analyzing → processing → completed, with failed reachable from
  queued/analyzing/processing).
* `Job` is the mutable record owned by the scheduler; everything handed to
  readers goes through `clone_job` so callers never share state with a run.
* `Chunk` is the ephemeral unit of concurrency and is never persisted.
* `PageResult` is persisted per page, keyed by (job_id, page_number).
"""
from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


class JobStatus(str, Enum):
    QUEUED = "queued"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class FileType(str, Enum):
    PDF = "pdf"
    IMAGE = "image"


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.ANALYZING, JobStatus.FAILED}),
    JobStatus.ANALYZING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class ProcessingDetail:
    stage: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    confidence: float | None = None


@dataclass(slots=True)
class Job:
    id: str
    file_name: str
    file_type: FileType
    file_size: int
    total_pages: int
    processed_pages: int = 0
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    error: str | None = None
    result: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    details: list[ProcessingDetail] = field(default_factory=list)


@dataclass(slots=True)
class PageMetadata:
    width: int | None = None
    height: int | None = None
    dpi: int | None = None
    orientation: int | None = None


@dataclass(slots=True)
class PageResult:
    job_id: str
    page_number: int
    text: str
    confidence: float | None = None
    image_ref: str | None = None
    metadata: PageMetadata | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class Chunk:
    """Consecutive page numbers of one job processed as a single unit."""

    index: int
    pages: tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.pages)


def compute_progress(processed_pages: int, total_pages: int) -> float:
    if total_pages <= 0:
        return 0.0
    return 100.0 * processed_pages / total_pages


def build_chunks(total_pages: int, chunk_size: int) -> list[Chunk]:
    """Partition ``1..total_pages`` into chunks of ``chunk_size`` pages.

    The last chunk may be shorter; the chunk count is
    ``ceil(total_pages / chunk_size)``.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    if total_pages < 1:
        return []
    count = math.ceil(total_pages / chunk_size)
    chunks: list[Chunk] = []
    for index in range(count):
        start = index * chunk_size + 1
        end = min(start + chunk_size - 1, total_pages)
        chunks.append(Chunk(index=index, pages=tuple(range(start, end + 1))))
    return chunks


def build_waves(chunks: list[Chunk], width: int) -> list[list[Chunk]]:
    if width < 1:
        raise ValueError("width must be positive")
    return [chunks[i : i + width] for i in range(0, len(chunks), width)]


def file_type_for(file_name: str) -> FileType:
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return FileType.PDF if extension == "pdf" else FileType.IMAGE


def clone_job(job: Job) -> Job:
    return replace(
        job,
        details=[replace(detail) for detail in job.details],
    )


def clone_page_result(result: PageResult) -> PageResult:
    return replace(
        result,
        metadata=None if result.metadata is None else replace(result.metadata),
    )


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def job_to_dict(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "file_name": job.file_name,
        "file_type": job.file_type.value,
        "file_size": job.file_size,
        "total_pages": job.total_pages,
        "processed_pages": job.processed_pages,
        "status": job.status.value,
        "progress": job.progress,
        "error": job.error,
        "result": job.result,
        "created_at": _iso(job.created_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "details": [
            {
                "stage": detail.stage,
                "message": detail.message,
                "timestamp": _iso(detail.timestamp),
                "confidence": detail.confidence,
            }
            for detail in job.details
        ],
    }


def page_result_to_dict(result: PageResult) -> Dict[str, Any]:
    return {
        "job_id": result.job_id,
        "page_number": result.page_number,
        "text": result.text,
        "confidence": result.confidence,
        "image_ref": result.image_ref,
        "metadata": None if result.metadata is None else asdict(result.metadata),
        "created_at": _iso(result.created_at),
    }


__all__ = [
    "Chunk",
    "FileType",
    "Job",
    "JobStatus",
    "PageMetadata",
    "PageResult",
    "ProcessingDetail",
    "build_chunks",
    "build_waves",
    "can_transition",
    "clone_job",
    "clone_page_result",
    "compute_progress",
    "file_type_for",
    "job_to_dict",
    "new_job_id",
    "page_result_to_dict",
    "utcnow",
]
