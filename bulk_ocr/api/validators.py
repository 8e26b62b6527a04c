"""Upload checks applied before a document is turned into a job."""

from __future__ import annotations

from typing import Iterable

from bulk_ocr.errors import InvalidJobError


def validate_upload(
    file_name: str,
    file_size: int,
    *,
    max_file_size: int,
    allowed_file_types: Iterable[str],
) -> None:
    """Reject oversized files and extensions outside the allowed set."""
    if file_size > max_file_size:
        raise InvalidJobError(
            f"File size exceeds maximum allowed size of {max_file_size / (1024 * 1024):.0f}MB",
            details={"code": "FILE_TOO_LARGE"},
        )
    allowed = tuple(allowed_file_types)
    extension = f".{file_name.rsplit('.', 1)[-1].lower()}" if "." in file_name else ""
    if extension not in allowed:
        raise InvalidJobError(
            f"File type {extension or '(none)'} is not supported. Allowed types: {', '.join(allowed)}",
            details={"code": "INVALID_FILE_TYPE"},
        )


__all__ = ["validate_upload"]
