from __future__ import annotations

from datetime import timedelta

import pytest

from bulk_ocr.errors import JobNotFoundError
from bulk_ocr.models.jobs import (
    FileType,
    Job,
    JobStatus,
    PageMetadata,
    PageResult,
    ProcessingDetail,
    utcnow,
)
from bulk_ocr.services.job_store import (
    InMemoryJobStore,
    SqliteJobStore,
    create_job_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def job_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    store = SqliteJobStore(tmp_path / "jobs.db")
    yield store
    store.close()


def _job(job_id: str = "job-1", **overrides) -> Job:
    values = {
        "id": job_id,
        "file_name": "scan.pdf",
        "file_type": FileType.PDF,
        "file_size": 2048,
        "total_pages": 3,
    }
    values.update(overrides)
    return Job(**values)


def test_save_and_get_round_trip(job_store):
    job = _job()
    job.details.append(ProcessingDetail(stage="queued", message="Job added to processing queue"))
    assert job_store.save_job(job) == "job-1"

    loaded = job_store.get_job("job-1")
    assert loaded is not None
    assert loaded.status is JobStatus.QUEUED
    assert loaded.file_type is FileType.PDF
    assert loaded.total_pages == 3
    assert [detail.stage for detail in loaded.details] == ["queued"]
    assert loaded.created_at == job.created_at


def test_get_unknown_job_returns_none(job_store):
    assert job_store.get_job("missing") is None


def test_update_job_applies_fields(job_store):
    job_store.save_job(_job())
    finished = utcnow()
    updated = job_store.update_job(
        "job-1",
        status=JobStatus.COMPLETED,
        processed_pages=3,
        progress=100.0,
        result="all text",
        completed_at=finished,
    )
    assert updated.status is JobStatus.COMPLETED
    loaded = job_store.get_job("job-1")
    assert loaded.processed_pages == 3
    assert loaded.progress == 100.0
    assert loaded.result == "all text"
    assert loaded.completed_at == finished


def test_update_unknown_job_raises(job_store):
    with pytest.raises(JobNotFoundError):
        job_store.update_job("missing", progress=10.0)


def test_update_rejects_unknown_fields(job_store):
    job_store.save_job(_job())
    with pytest.raises(ValueError):
        job_store.update_job("job-1", colour="blue")
    with pytest.raises(ValueError):
        job_store.update_job("job-1", id="other")


def test_returned_jobs_are_copies(job_store):
    job_store.save_job(_job())
    loaded = job_store.get_job("job-1")
    loaded.details.append(ProcessingDetail(stage="x", message="local only"))
    loaded.processed_pages = 2
    again = job_store.get_job("job-1")
    assert again.details == []
    assert again.processed_pages == 0


def test_list_jobs_newest_first(job_store):
    older = _job("old", created_at=utcnow() - timedelta(minutes=5))
    newer = _job("new")
    job_store.save_job(older)
    job_store.save_job(newer)
    assert [job.id for job in job_store.list_jobs()] == ["new", "old"]


def test_page_results_last_write_wins_and_sorted(job_store):
    job_store.save_job(_job())
    job_store.save_page_result(PageResult(job_id="job-1", page_number=2, text="second"))
    job_store.save_page_result(
        PageResult(
            job_id="job-1",
            page_number=1,
            text="first",
            confidence=0.9,
            image_ref="uploads/job-1/page-1.png",
            metadata=PageMetadata(width=800, height=1200, dpi=300, orientation=0),
        )
    )
    job_store.save_page_result(PageResult(job_id="job-1", page_number=2, text="second again"))

    pages = job_store.get_page_results("job-1")
    assert [page.page_number for page in pages] == [1, 2]
    assert pages[1].text == "second again"
    assert pages[0].metadata == PageMetadata(width=800, height=1200, dpi=300, orientation=0)
    assert pages[0].image_ref == "uploads/job-1/page-1.png"


def test_delete_job_removes_page_results(job_store):
    job_store.save_job(_job())
    job_store.save_page_result(PageResult(job_id="job-1", page_number=1, text="first"))
    job_store.delete_job("job-1")
    assert job_store.get_job("job-1") is None
    assert job_store.get_page_results("job-1") == []


def test_delete_page_results_keeps_job(job_store):
    job_store.save_job(_job())
    job_store.save_page_result(PageResult(job_id="job-1", page_number=1, text="first"))
    job_store.delete_page_results("job-1")
    assert job_store.get_page_results("job-1") == []
    assert job_store.get_job("job-1") is not None


def test_resaving_job_keeps_page_results(job_store):
    job_store.save_job(_job())
    job_store.save_page_result(PageResult(job_id="job-1", page_number=1, text="first"))
    job_store.save_job(_job(status=JobStatus.QUEUED))
    assert len(job_store.get_page_results("job-1")) == 1


def test_sqlite_store_survives_reopen(tmp_path):
    path = tmp_path / "nested" / "ocr.db"
    first = SqliteJobStore(path)
    first.save_job(_job())
    first.save_page_result(PageResult(job_id="job-1", page_number=1, text="persisted"))
    first.close()

    second = SqliteJobStore(path)
    try:
        assert second.get_job("job-1").file_name == "scan.pdf"
        assert second.get_page_results("job-1")[0].text == "persisted"
    finally:
        second.close()


def test_create_job_store_selects_backend(tmp_path):
    assert isinstance(create_job_store("memory"), InMemoryJobStore)
    sqlite_store = create_job_store("SQLite", path=tmp_path / "x.db")
    assert isinstance(sqlite_store, SqliteJobStore)
    sqlite_store.close()
    with pytest.raises(ValueError):
        create_job_store("redis")
