"""Helpers for turning page images into the data URLs OCR providers accept."""

from __future__ import annotations

import base64
import binascii
import re
import struct

_DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,([A-Za-z0-9+/]+={0,2})$")

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"BM", "image/bmp"),
)


def detect_image_mime(data: bytes) -> str | None:
    """Return the MIME type for encoded image bytes, or None if unrecognised."""
    if not data:
        return None
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    for signature, mime in _SIGNATURES:
        if data.startswith(signature):
            return mime
    return None


def image_dimensions(data: bytes) -> tuple[int, int] | None:
    """Return ``(width, height)`` read from the image header, or None."""
    mime = detect_image_mime(data)
    try:
        if mime == "image/png" and data[12:16] == b"IHDR":
            return struct.unpack(">II", data[16:24])
        if mime == "image/gif":
            return struct.unpack("<HH", data[6:10])
        if mime == "image/bmp":
            width, height = struct.unpack("<ii", data[18:26])
            return width, abs(height)
        if mime == "image/jpeg":
            return _jpeg_dimensions(data)
    except struct.error:
        return None
    return None


def _jpeg_dimensions(data: bytes) -> tuple[int, int] | None:
    # Walk the marker segments up to the first start-of-frame.
    index = 2
    while index + 9 < len(data):
        if data[index] != 0xFF:
            return None
        marker = data[index + 1]
        if 0xC0 <= marker <= 0xCF and marker not in (0xC4, 0xC8, 0xCC):
            height, width = struct.unpack(">HH", data[index + 5 : index + 9])
            return width, height
        (length,) = struct.unpack(">H", data[index + 2 : index + 4])
        index += 2 + length
    return None


def is_image_data_url(value: str) -> bool:
    return bool(_DATA_URL_RE.match(value.strip()))


def split_data_url(value: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a base64 image data URL."""
    match = _DATA_URL_RE.match(value.strip())
    if not match:
        raise ValueError("Invalid data URL format")
    return match.group(1), match.group(2)


def to_data_url(image: bytes | str) -> str | None:
    """Normalise raw image bytes or an image data URL into a data URL.

    Returns None when the input is empty, malformed or not an image.
    """
    if isinstance(image, str):
        candidate = image.strip()
        if not is_image_data_url(candidate):
            return None
        _mime, payload = split_data_url(candidate)
        try:
            base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return None
        return candidate
    mime = detect_image_mime(image)
    if mime is None:
        return None
    return f"data:{mime};base64,{base64.b64encode(image).decode('ascii')}"


__all__ = ["detect_image_mime", "image_dimensions", "is_image_data_url", "split_data_url", "to_data_url"]
