"""FastAPI application entrypoint for the bulk OCR job service."""

from __future__ import annotations

import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bulk_ocr.api import build_api_router
from bulk_ocr.config import get_config
from bulk_ocr.errors import InvalidJobError, JobNotFoundError, JobStateError
from bulk_ocr.logging_setup import configure_logging
from bulk_ocr.services.job_store import create_job_store
from bulk_ocr.services.metrics import NullMetrics, PrometheusMetrics
from bulk_ocr.services.ocr_client import RetryingOCRClient
from bulk_ocr.services.page_source import DirectoryPageSource
from bulk_ocr.services.scheduler import JobScheduler
from bulk_ocr.utils.logging_utils import structured_log

DEBUG_ENABLED = any(arg == "--debug" for arg in sys.argv) or os.getenv(
    "DEBUG", "false"
).strip().lower() in {"1", "true", "yes", "on"}
LOG_LEVEL = logging.DEBUG if DEBUG_ENABLED else logging.INFO

_API_LOG = logging.getLogger("api")


def _health_payload() -> dict[str, str]:
    return {"status": "ok"}


def create_app() -> FastAPI:
    configure_logging(level=LOG_LEVEL)
    get_config.cache_clear()

    cfg = get_config()
    cfg.validate_required()
    app = FastAPI(title="Bulk OCR API", version="1.0.0")
    app.state.config = cfg

    if cfg.enable_metrics:
        metrics = PrometheusMetrics.instrument_app(app)
    else:
        metrics = NullMetrics()
    app.state.metrics = metrics

    store = create_job_store(cfg.job_store_backend, path=cfg.job_store_path)
    ocr_client = RetryingOCRClient(cfg.ocr_settings(), metrics=metrics)
    scheduler = JobScheduler(
        client=ocr_client,
        store=store,
        page_source=DirectoryPageSource(cfg.page_image_root),
        settings=cfg.processing_settings(),
        metrics=metrics,
    )
    app.state.job_store = store
    app.state.ocr_client = ocr_client
    app.state.scheduler = scheduler

    @app.exception_handler(InvalidJobError)
    async def _invalid_job_handler(_r: Request, exc: InvalidJobError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(JobNotFoundError)
    async def _not_found_handler(_r: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(JobStateError)
    async def _state_handler(_r: Request, exc: JobStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/healthz", summary="Healthz")
    async def healthz():
        return _health_payload()

    @app.get("/readyz", include_in_schema=False)
    async def readyz():
        return _health_payload()

    app.include_router(build_api_router())

    @app.on_event("startup")
    async def _start_scheduler():
        recovered = await scheduler.recover_interrupted()
        scheduler.start()
        structured_log(
            _API_LOG,
            logging.INFO,
            "service_startup",
            provider=cfg.ocr_provider,
            model=cfg.ocr_model,
            chunk_size=cfg.chunk_size,
            concurrent_chunks=cfg.concurrent_chunks,
            workers=cfg.max_concurrent_jobs,
            recovered_jobs=len(recovered),
        )

    @app.on_event("shutdown")
    async def _stop_scheduler():
        await scheduler.shutdown()

    return app


__all__ = ["create_app"]
