"""Persistence for jobs and page results.

`JobStore` is the narrow interface the scheduler depends on. Two backends are
provided:

* `InMemoryJobStore`: thread-safe, returns copies; used for tests and local
  development.
* `SqliteJobStore`: single-file SQLite database. Page results are keyed by
  ``(job_id, page_number)`` and written with ``INSERT OR REPLACE`` so the last
  write for a page wins.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Protocol

from bulk_ocr.errors import JobNotFoundError
from bulk_ocr.models.jobs import (
    FileType,
    Job,
    JobStatus,
    PageMetadata,
    PageResult,
    ProcessingDetail,
    clone_job,
    clone_page_result,
)

LOG = logging.getLogger("job_store")

_JOB_FIELDS = frozenset(f.name for f in fields(Job))


class JobStore(Protocol):
    """Abstract persistence interface for job and page result records."""

    def save_job(self, job: Job) -> str:
        ...

    def update_job(self, job_id: str, **updates: Any) -> Job:
        ...

    def get_job(self, job_id: str) -> Job | None:
        ...

    def list_jobs(self) -> list[Job]:
        ...

    def delete_job(self, job_id: str) -> None:
        ...

    def save_page_result(self, result: PageResult) -> None:
        ...

    def get_page_results(self, job_id: str) -> list[PageResult]:
        ...

    def delete_page_results(self, job_id: str) -> None:
        ...


def _check_update_fields(updates: Dict[str, Any]) -> None:
    unknown = set(updates) - _JOB_FIELDS
    if unknown or "id" in updates:
        raise ValueError(f"Cannot update job fields: {sorted(unknown | ({'id'} & set(updates)))}")


class InMemoryJobStore(JobStore):
    """Thread-safe in-memory store used for tests and local development."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._pages: Dict[str, Dict[int, PageResult]] = {}
        self._lock = threading.RLock()

    def save_job(self, job: Job) -> str:
        with self._lock:
            self._jobs[job.id] = clone_job(job)
            LOG.info(
                "job_saved",
                extra={"job_id": job.id, "status": job.status.value, "total_pages": job.total_pages},
            )
            return job.id

    def update_job(self, job_id: str, **updates: Any) -> Job:
        _check_update_fields(updates)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Unknown job: {job_id}")
            for key, value in updates.items():
                if key == "details":
                    value = [ProcessingDetail(**asdict(detail)) for detail in value]
                setattr(job, key, value)
            return clone_job(job)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return None if job is None else clone_job(job)

    def list_jobs(self) -> list[Job]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda item: item.created_at, reverse=True)
            return [clone_job(job) for job in jobs]

    def delete_job(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
            self._pages.pop(job_id, None)

    def save_page_result(self, result: PageResult) -> None:
        with self._lock:
            self._pages.setdefault(result.job_id, {})[result.page_number] = clone_page_result(result)

    def get_page_results(self, job_id: str) -> list[PageResult]:
        with self._lock:
            pages = self._pages.get(job_id, {})
            return [clone_page_result(pages[number]) for number in sorted(pages)]

    def delete_page_results(self, job_id: str) -> None:
        with self._lock:
            self._pages.pop(job_id, None)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    file_type TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    total_pages INTEGER NOT NULL,
    processed_pages INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    progress REAL NOT NULL DEFAULT 0,
    error TEXT,
    result TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    details TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS page_results (
    job_id TEXT NOT NULL,
    page_number INTEGER NOT NULL,
    text TEXT NOT NULL,
    confidence REAL,
    image_ref TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (job_id, page_number)
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);
"""


def _dt(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _details_to_json(details: list[ProcessingDetail]) -> str:
    return json.dumps(
        [
            {
                "stage": detail.stage,
                "message": detail.message,
                "timestamp": detail.timestamp.isoformat(),
                "confidence": detail.confidence,
            }
            for detail in details
        ]
    )


def _details_from_json(raw: str | None) -> list[ProcessingDetail]:
    if not raw:
        return []
    return [
        ProcessingDetail(
            stage=item["stage"],
            message=item["message"],
            timestamp=datetime.fromisoformat(item["timestamp"]),
            confidence=item.get("confidence"),
        )
        for item in json.loads(raw)
    ]


def _encode_column(key: str, value: Any) -> Any:
    if key == "details":
        return _details_to_json(value)
    if isinstance(value, (JobStatus, FileType)):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _job_from_row(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        file_name=row["file_name"],
        file_type=FileType(row["file_type"]),
        file_size=row["file_size"],
        total_pages=row["total_pages"],
        processed_pages=row["processed_pages"],
        status=JobStatus(row["status"]),
        progress=row["progress"],
        error=row["error"],
        result=row["result"],
        created_at=datetime.fromisoformat(row["created_at"]),
        started_at=_dt(row["started_at"]),
        completed_at=_dt(row["completed_at"]),
        details=_details_from_json(row["details"]),
    )


def _page_from_row(row: sqlite3.Row) -> PageResult:
    metadata = json.loads(row["metadata"]) if row["metadata"] else None
    return PageResult(
        job_id=row["job_id"],
        page_number=row["page_number"],
        text=row["text"],
        confidence=row["confidence"],
        image_ref=row["image_ref"],
        metadata=None if metadata is None else PageMetadata(**metadata),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SqliteJobStore(JobStore):
    """SQLite-backed store; one connection shared behind a lock."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def save_job(self, job: Job) -> str:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO jobs (
                    id, file_name, file_type, file_size, total_pages, processed_pages,
                    status, progress, error, result, created_at, started_at,
                    completed_at, details
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.file_name,
                    job.file_type.value,
                    job.file_size,
                    job.total_pages,
                    job.processed_pages,
                    job.status.value,
                    job.progress,
                    job.error,
                    job.result,
                    job.created_at.isoformat(),
                    _iso(job.started_at),
                    _iso(job.completed_at),
                    _details_to_json(job.details),
                ),
            )
        LOG.info(
            "job_saved",
            extra={"job_id": job.id, "status": job.status.value, "total_pages": job.total_pages},
        )
        return job.id

    def update_job(self, job_id: str, **updates: Any) -> Job:
        _check_update_fields(updates)
        with self._lock, self._conn:
            if updates:
                columns = ", ".join(f"{key} = ?" for key in updates)
                values = [_encode_column(key, value) for key, value in updates.items()]
                cursor = self._conn.execute(
                    f"UPDATE jobs SET {columns} WHERE id = ?", (*values, job_id)
                )
                if cursor.rowcount == 0:
                    raise JobNotFoundError(f"Unknown job: {job_id}")
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(f"Unknown job: {job_id}")
        return _job_from_row(row)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else _job_from_row(row)

    def list_jobs(self) -> list[Job]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM jobs ORDER BY created_at DESC").fetchall()
        return [_job_from_row(row) for row in rows]

    def delete_job(self, job_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM page_results WHERE job_id = ?", (job_id,))
            self._conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))

    def save_page_result(self, result: PageResult) -> None:
        metadata = None if result.metadata is None else json.dumps(asdict(result.metadata))
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO page_results (
                    job_id, page_number, text, confidence, image_ref, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.job_id,
                    result.page_number,
                    result.text,
                    result.confidence,
                    result.image_ref,
                    metadata,
                    result.created_at.isoformat(),
                ),
            )

    def get_page_results(self, job_id: str) -> list[PageResult]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM page_results WHERE job_id = ? ORDER BY page_number",
                (job_id,),
            ).fetchall()
        return [_page_from_row(row) for row in rows]

    def delete_page_results(self, job_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM page_results WHERE job_id = ?", (job_id,))


def create_job_store(backend: str = "memory", *, path: str | Path | None = None) -> JobStore:
    """Build the configured store backend."""
    choice = (backend or "memory").strip().lower()
    if choice == "sqlite":
        return SqliteJobStore(path or "data/ocr.db")
    if choice == "memory":
        return InMemoryJobStore()
    raise ValueError(f"Unsupported job store backend: {backend}")


__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "SqliteJobStore",
    "create_job_store",
]
