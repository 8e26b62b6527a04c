"""Page image lookup on the local filesystem.

Rasterising PDFs is handled upstream; this source only locates the image that
was produced for a page:

* image jobs have exactly one page, the uploaded file itself
  (``<root>/<file_name>``);
* PDF jobs read ``<root>/<job_id>/page-<n>.<ext>`` for any supported image
  extension.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from bulk_ocr.errors import InvalidInputError
from bulk_ocr.models.jobs import FileType, Job

from .interfaces import PageImageSource

LOG = logging.getLogger("page_source")

PAGE_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".tiff", ".tif", ".bmp", ".gif")


class DirectoryPageSource(PageImageSource):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def page_path(self, job: Job, page_number: int) -> Path:
        if page_number < 1 or page_number > job.total_pages:
            raise InvalidInputError(
                f"Page {page_number} outside 1..{job.total_pages}",
                details={"page_number": page_number},
            )
        if job.file_type is FileType.IMAGE:
            return self.root / job.file_name
        folder = self.root / job.id
        for extension in PAGE_IMAGE_EXTENSIONS:
            candidate = folder / f"page-{page_number}{extension}"
            if candidate.is_file():
                return candidate
        raise InvalidInputError(
            f"No rasterised image found for page {page_number}",
            details={"page_number": page_number},
        )

    def image_ref(self, job: Job, page_number: int) -> str | None:
        try:
            return str(self.page_path(job, page_number))
        except InvalidInputError:
            return None

    async def get_page_image(self, job: Job, page_number: int) -> bytes:
        path = self.page_path(job, page_number)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            LOG.warning(
                "page_image_unreadable",
                extra={"job_id": job.id, "page_number": page_number, "error": str(exc)},
            )
            raise InvalidInputError(f"Cannot read page image {path.name}: {exc}") from exc


__all__ = ["DirectoryPageSource", "PAGE_IMAGE_EXTENSIONS"]
