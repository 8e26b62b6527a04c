"""Job queue routes: enqueue, inspect, remove and retry OCR jobs."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from bulk_ocr.errors import InvalidJobError, JobNotFoundError, JobStateError
from bulk_ocr.models.jobs import (
    FileType,
    Job,
    file_type_for,
    job_to_dict,
    new_job_id,
    page_result_to_dict,
)
from bulk_ocr.utils.logging_utils import structured_log

from .validators import validate_upload

router = APIRouter()

_API_LOG = logging.getLogger("api")


class JobCreateRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)
    total_pages: int
    file_type: FileType | None = None
    id: str | None = None


def _scheduler(request: Request):
    return request.app.state.scheduler


def _store(request: Request):
    return request.app.state.job_store


@router.post("", status_code=202)
async def enqueue_job(payload: JobCreateRequest, request: Request) -> Dict[str, Any]:
    cfg = request.app.state.config
    try:
        validate_upload(
            payload.file_name,
            payload.file_size,
            max_file_size=cfg.max_file_size,
            allowed_file_types=cfg.allowed_file_types,
        )
        job = _scheduler(request).enqueue(
            Job(
                id=payload.id or new_job_id(),
                file_name=payload.file_name,
                file_type=payload.file_type or file_type_for(payload.file_name),
                file_size=payload.file_size,
                total_pages=payload.total_pages,
            )
        )
    except InvalidJobError as exc:
        structured_log(_API_LOG, logging.WARNING, "job_rejected", file_name=payload.file_name, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return job_to_dict(job)


@router.get("/queue")
async def queue_snapshot(request: Request) -> Dict[str, Any]:
    jobs = _scheduler(request).get_queue_snapshot()
    return {"jobs": [job_to_dict(job) for job in jobs], "length": len(jobs)}


@router.get("/{job_id}")
async def get_job(job_id: str, request: Request) -> Dict[str, Any]:
    job = _store(request).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    return job_to_dict(job)


@router.get("/{job_id}/pages")
async def get_job_pages(job_id: str, request: Request) -> Dict[str, Any]:
    store = _store(request)
    if store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    pages = store.get_page_results(job_id)
    return {"job_id": job_id, "pages": [page_result_to_dict(page) for page in pages]}


@router.delete("/{job_id}")
async def remove_job(job_id: str, request: Request) -> Dict[str, Any]:
    try:
        job = _scheduler(request).remove(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"removed": True, "job": job_to_dict(job)}


@router.post("/{job_id}/retry", status_code=202)
async def retry_job(job_id: str, request: Request) -> Dict[str, Any]:
    try:
        job = _scheduler(request).retry(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return job_to_dict(job)


__all__ = ["router"]
