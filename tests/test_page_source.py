from __future__ import annotations

import pytest

from bulk_ocr.errors import InvalidInputError
from bulk_ocr.models.jobs import FileType, Job
from bulk_ocr.services.page_source import DirectoryPageSource
from tests.stubs.ocr_stub import page_png


def _job(file_type: FileType, total_pages: int, file_name: str) -> Job:
    return Job(
        id="job-42",
        file_name=file_name,
        file_type=file_type,
        file_size=10,
        total_pages=total_pages,
    )


@pytest.mark.asyncio
async def test_image_job_reads_uploaded_file(tmp_path):
    (tmp_path / "receipt.png").write_bytes(page_png(1))
    source = DirectoryPageSource(tmp_path)
    job = _job(FileType.IMAGE, 1, "receipt.png")

    assert await source.get_page_image(job, 1) == page_png(1)
    assert source.image_ref(job, 1) == str(tmp_path / "receipt.png")


@pytest.mark.asyncio
async def test_pdf_job_reads_rasterised_pages(tmp_path):
    folder = tmp_path / "job-42"
    folder.mkdir()
    (folder / "page-1.png").write_bytes(page_png(1))
    (folder / "page-2.jpg").write_bytes(b"\xff\xd8\xff\xe0jpeg")
    source = DirectoryPageSource(tmp_path)
    job = _job(FileType.PDF, 3, "book.pdf")

    assert await source.get_page_image(job, 1) == page_png(1)
    assert (await source.get_page_image(job, 2)).startswith(b"\xff\xd8\xff")
    assert source.image_ref(job, 2).endswith("page-2.jpg")
    assert source.image_ref(job, 3) is None
    with pytest.raises(InvalidInputError, match="No rasterised image"):
        await source.get_page_image(job, 3)


@pytest.mark.asyncio
async def test_page_outside_range_is_rejected(tmp_path):
    source = DirectoryPageSource(tmp_path)
    job = _job(FileType.PDF, 2, "book.pdf")
    with pytest.raises(InvalidInputError):
        await source.get_page_image(job, 0)
    with pytest.raises(InvalidInputError):
        await source.get_page_image(job, 3)


@pytest.mark.asyncio
async def test_missing_image_file_is_invalid_input(tmp_path):
    source = DirectoryPageSource(tmp_path)
    job = _job(FileType.IMAGE, 1, "gone.png")
    with pytest.raises(InvalidInputError, match="Cannot read page image"):
        await source.get_page_image(job, 1)
