"""Shared interfaces used across the bulk OCR services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from bulk_ocr.models.jobs import Job


class MetricsClient(Protocol):
    """Interface for emitting metrics to Prometheus."""

    def observe_latency(self, name: str, value: float, **labels: str) -> None: ...

    def increment(self, name: str, amount: int = 1, **labels: str) -> None: ...


class PageImageSource(Protocol):
    """Returns the encoded image bytes for one page of a job's document."""

    async def get_page_image(self, job: "Job", page_number: int) -> bytes: ...

    def image_ref(self, job: "Job", page_number: int) -> str | None: ...


__all__ = ["MetricsClient", "PageImageSource"]
