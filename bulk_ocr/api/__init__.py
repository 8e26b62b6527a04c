"""Routers for the bulk OCR FastAPI application."""

from __future__ import annotations

from fastapi import APIRouter

from .jobs import router as jobs_router
from .ocr import router as ocr_router


def build_api_router() -> APIRouter:
    """Combine all API routers for inclusion in the FastAPI app."""
    router = APIRouter()
    router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
    router.include_router(ocr_router, prefix="/ocr", tags=["ocr"])
    return router


__all__ = ["build_api_router"]
