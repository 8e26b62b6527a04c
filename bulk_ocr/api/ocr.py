"""OCR configuration check route."""

from __future__ import annotations

from fastapi import APIRouter, Request

from bulk_ocr.errors import ConfigurationError

router = APIRouter()


@router.post("/validate")
async def validate_ocr_configuration(request: Request) -> dict[str, object]:
    client = request.app.state.ocr_client
    try:
        client.validate_configuration()
    except ConfigurationError as exc:
        return {"valid": False, "error": str(exc), "provider": client.settings.provider}
    return {"valid": True, "provider": client.settings.provider, "model": client.settings.model}


__all__ = ["router"]
