"""Resolve one chunk of page numbers to persisted page results."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from bulk_ocr.errors import ChunkFailure
from bulk_ocr.models.jobs import Job, PageMetadata, PageResult
from bulk_ocr.utils.images import image_dimensions

from .interfaces import PageImageSource
from .job_store import JobStore
from .ocr_client import RetryingOCRClient

LOG = logging.getLogger("chunk_processor")

_METADATA_FIELDS = ("width", "height", "dpi", "orientation")


def page_metadata(image: bytes, reported: Mapping[str, Any]) -> PageMetadata | None:
    """Merge header dimensions with whatever layout fields the provider reported."""
    values: dict[str, int] = {}
    size = image_dimensions(image)
    if size is not None:
        values["width"], values["height"] = size
    for key in _METADATA_FIELDS:
        value = reported.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            values[key] = value
    return PageMetadata(**values) if values else None


class ChunkProcessor:
    """Runs every page of a chunk concurrently through the OCR client.

    Each page is persisted as soon as its OCR call succeeds. When any page
    fails, the chunk raises `ChunkFailure` for the lowest failing page number
    after all sibling pages have settled; the failure carries the results that
    did succeed so progress can still count them.
    """

    def __init__(
        self,
        *,
        client: RetryingOCRClient,
        store: JobStore,
        page_source: PageImageSource,
    ) -> None:
        self.client = client
        self.store = store
        self.page_source = page_source

    async def process(self, job: Job, page_numbers: Sequence[int]) -> list[PageResult]:
        outcomes = await asyncio.gather(
            *(self._process_page(job, number) for number in page_numbers),
            return_exceptions=True,
        )
        completed: list[PageResult] = []
        failures: list[tuple[int, BaseException]] = []
        for number, outcome in zip(page_numbers, outcomes):
            if isinstance(outcome, PageResult):
                completed.append(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                raise outcome
            else:
                failures.append((number, outcome))
        if failures:
            page_number, cause = min(failures, key=lambda item: item[0])
            LOG.warning(
                "chunk_failed",
                extra={
                    "job_id": job.id,
                    "page_number": page_number,
                    "failed_pages": [number for number, _ in failures],
                    "completed_pages": [result.page_number for result in completed],
                    "error": str(cause),
                },
            )
            raise ChunkFailure(page_number, cause, completed=completed)
        return completed

    async def _process_page(self, job: Job, page_number: int) -> PageResult:
        image = await self.page_source.get_page_image(job, page_number)
        ocr = await self.client.process_page(image, page_number=page_number)
        result = PageResult(
            job_id=job.id,
            page_number=page_number,
            text=ocr.text,
            confidence=ocr.confidence,
            image_ref=await asyncio.to_thread(self.page_source.image_ref, job, page_number),
            metadata=page_metadata(image, ocr.metadata),
        )
        await asyncio.to_thread(self.store.save_page_result, result)
        return result


__all__ = ["ChunkProcessor", "page_metadata"]
